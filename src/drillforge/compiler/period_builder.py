"""Period-over-period rate pivot over the CRM store.

one row per dimension value, two counts per period: trials and the trials
that made it to approved / paid / bought. the rate itself is worked out in
python by transform_period_rows so a zero-trial period doesn't need a
NULLIF dance in sql.

param order follows the text: every period's bounds for the select list,
the overall range for WHERE, parent filter values, then the period bounds
again for HAVING.
"""

import logging
from typing import Any

from drillforge.compiler.clauses import (
    UNKNOWN,
    collect_joins,
    order_parent_filters,
    parent_filter_clause,
    parent_params,
    render,
)
from drillforge.compiler.dialect import Placeholders
from drillforge.models.catalog import Dialect, JoinClause
from drillforge.models.period import PeriodRate, PeriodRateRow, RateType, TimePeriod
from drillforge.models.query import BuiltQuery
from drillforge.parser.loader import DimensionRegistry

logger = logging.getLogger(__name__)

# a row is only worth showing if some period has at least this many trials
MIN_TRIALS = 3

PROCESSED = JoinClause(
    alias="ipr", sql="LEFT JOIN invoice_proccessed ipr ON ipr.invoice_id = i.id"
)

RATE_CONDITIONS: dict[RateType, str] = {
    RateType.APPROVAL: "i.is_marked = 1",
    RateType.PAY: "ipr.date_paid IS NOT NULL",
    RateType.BUY: "ipr.date_bought IS NOT NULL",
}


class PeriodQueryBuilder:
    """Builds trial / approved counts per period for one crm dimension."""

    def __init__(self, registry: DimensionRegistry) -> None:
        if registry.report.dialect is not Dialect.MARIADB:
            raise ValueError(
                f"Period pivots need a mariadb report, got '{registry.report.name}'"
            )
        self.registry = registry
        self.report = registry.report

    def build_query(
        self,
        rate_type: RateType | str,
        dimension: str,
        periods: list[TimePeriod],
        parent_filters: dict[str, str] | None = None,
        dimensions: list[str] | None = None,
    ) -> BuiltQuery:
        """Pivot for one drill level.

        dimensions is the drill path; parent filters on it bind in path order
        no matter how the dict was built.
        """
        rate_type = RateType(rate_type)
        if not periods:
            raise ValueError("Period pivot needs at least one period")

        dim = self.registry.resolve(dimension)
        ordered = order_parent_filters(dimensions or [], parent_filters or {})
        parents = [(self.registry.resolve_parent(k), v) for k, v in ordered]

        extra = [PROCESSED] if rate_type is not RateType.APPROVAL else []
        joins = collect_joins(
            [*self.report.base_joins, *extra],
            [dim, *(d for d, _ in parents if d.filter_uses_joins)],
        )
        base_prefix = f"{self.report.alias}."
        date_column = render(self.report.date_column, base_prefix)
        rate_condition = RATE_CONDITIONS[rate_type]

        placeholders = Placeholders(Dialect.MARIADB)
        params: list[Any] = []

        select_exprs = [f"{render(dim.value_expr, base_prefix)} AS dimension_value"]
        for period in periods:
            in_period = f"{date_column} BETWEEN {placeholders.next()} AND {placeholders.next()}"
            params += [period.start_date, period.end_date]
            select_exprs.append(
                f"COUNT(DISTINCT CASE WHEN {in_period} THEN i.id END) AS {period.key}_trials"
            )
            in_period = f"{date_column} BETWEEN {placeholders.next()} AND {placeholders.next()}"
            params += [period.start_date, period.end_date]
            select_exprs.append(
                f"COUNT(DISTINCT CASE WHEN {in_period} AND {rate_condition} THEN i.id END)"
                f" AS {period.key}_approved"
            )

        where = [f"{date_column} BETWEEN {placeholders.next()} AND {placeholders.next()}"]
        params += [periods[0].start_date, periods[-1].end_date]
        for parent, value in parents:
            where.append(parent_filter_clause(parent, value, placeholders, base_prefix))
        params += parent_params(ordered)

        having = []
        for period in periods:
            in_period = f"{date_column} BETWEEN {placeholders.next()} AND {placeholders.next()}"
            params += [period.start_date, period.end_date]
            having.append(f"COUNT(DISTINCT CASE WHEN {in_period} THEN i.id END) >= {MIN_TRIALS}")

        lines = [f"{self.report.table} {self.report.alias}"]
        lines += [render(j.sql, base_prefix) for j in joins]
        sql = "\n".join(
            [
                "SELECT\n  " + ",\n  ".join(select_exprs),
                "FROM " + "\n".join(lines),
                "WHERE " + "\n  AND ".join(where),
                f"GROUP BY {', '.join(render(e, base_prefix) for e in dim.group_by)}",
                "HAVING " + "\n  OR ".join(having),
                "ORDER BY dimension_value",
            ]
        )

        if placeholders.count != len(params):
            raise RuntimeError(
                f"placeholder/param mismatch: {placeholders.count} placeholders, "
                f"{len(params)} params"
            )
        logger.debug(
            "built %s period pivot for %s over %d periods",
            rate_type.value,
            dimension,
            len(periods),
        )
        return BuiltQuery(query=sql, params=params)


def transform_period_rows(
    rows: list[dict[str, Any]],
    periods: list[TimePeriod],
    dimensions: list[str],
    depth: int,
    parent_key: str | None = None,
) -> list[PeriodRateRow]:
    """Reshape flat pivot rows into one PeriodRateRow per dimension value.

    rate is a percentage rounded to 2 places, 0 when the period had no
    trials. NULL dimension values come back as "Unknown" so they can be
    drilled into like any other value.
    """
    result = []
    for row in rows:
        attribute = row.get("dimension_value")
        attribute = UNKNOWN if attribute is None else str(attribute)

        metrics = {}
        for period in periods:
            trials = int(row.get(f"{period.key}_trials") or 0)
            approved = int(row.get(f"{period.key}_approved") or 0)
            rate = round(approved / trials * 100, 2) if trials else 0.0
            metrics[period.key] = PeriodRate(rate=rate, trials=trials, approved=approved)

        result.append(
            PeriodRateRow(
                key=f"{parent_key}::{attribute}" if parent_key else attribute,
                attribute=attribute,
                depth=depth,
                has_children=depth < len(dimensions) - 1,
                metrics=metrics,
            )
        )
    return result
