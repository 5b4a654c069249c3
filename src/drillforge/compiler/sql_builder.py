"""Aggregate query builder for one drill-down level.

turns QueryOptions into a single GROUP BY query over the report's fact
table plus its positional params. the flow:
  1. validate depth and resolve every dimension id up front
  2. pick joins (current dimension + any filter that needs them)
  3. build select / where / group by / order by / limit
  4. check placeholder count against assemble_params and return

nothing here touches a database, so the builder is safe to share between
concurrent requests. same options in, byte-identical query out.
"""

import logging
from dataclasses import dataclass, field

import sqlglot

from drillforge.compiler.clauses import (
    assemble_params,
    clamp_limit,
    collect_joins,
    order_by_clause,
    order_parent_filters,
    parent_filter_clause,
    render,
    table_filter_clause,
    validate_filter_operator,
    validate_sort_direction,
)
from drillforge.compiler.dialect import Placeholders, date_predicate
from drillforge.errors import DepthOutOfRangeError
from drillforge.models.catalog import Dialect, Dimension
from drillforge.models.query import BuiltQuery, QueryOptions, TableFilter
from drillforge.parser.loader import DimensionRegistry

logger = logging.getLogger(__name__)


@dataclass
class ResolvedRequest:
    """Everything the registry had to say about a request.

    built before any sql so that a bad id fails the whole call cleanly.
    """

    dimension: Dimension
    parents: list[tuple[Dimension, str]] = field(default_factory=list)
    parent_items: list[tuple[str, str]] = field(default_factory=list)
    filters: list[tuple[Dimension, TableFilter]] = field(default_factory=list)


class AggregateQueryBuilder:
    """Builds drill-down aggregate queries for one report."""

    def __init__(self, registry: DimensionRegistry) -> None:
        self.registry = registry
        self.report = registry.report

    @property
    def dialect(self) -> Dialect:
        return self.report.dialect

    def build_query(self, options: QueryOptions) -> BuiltQuery:
        resolved = self.resolve(options)
        validate_sort_direction(options.sort_direction)

        joined_dims = [resolved.dimension]
        joined_dims += [d for d, _ in resolved.parents if d.filter_uses_joins]
        joined_dims += [d for d, _ in resolved.filters if d.filter_uses_joins]
        joins = collect_joins(self.report.base_joins, joined_dims)

        # only alias the fact table when something is joined to it
        base_prefix = f"{self.report.alias}." if joins else ""

        placeholders = Placeholders(self.dialect)
        select_exprs = self._build_select_exprs(resolved.dimension, base_prefix)
        from_clause = self._build_from_clause(joins, base_prefix)
        where_conditions = self._build_where_conditions(resolved, placeholders, base_prefix)
        group_by_exprs = [render(e, base_prefix) for e in resolved.dimension.group_by]
        order_by = order_by_clause(
            self.report, resolved.dimension, options.sort_by, options.sort_direction
        )

        sql = self._assemble_query(
            select_exprs=select_exprs,
            from_clause=from_clause,
            where_conditions=where_conditions,
            group_by_exprs=group_by_exprs,
            order_by=order_by,
            limit=clamp_limit(options.limit),
        )

        params = assemble_params(
            self.dialect,
            options.date_range,
            resolved.parent_items,
            [f for _, f in resolved.filters],
        )
        if placeholders.count != len(params):
            raise RuntimeError(
                f"placeholder/param mismatch: {placeholders.count} placeholders, "
                f"{len(params)} params"
            )

        logger.debug(
            "built %s query for %s: %s %s", self.report.name, resolved.dimension.id, sql, params
        )
        return BuiltQuery(query=sql, params=params)

    def resolve(self, options: QueryOptions) -> ResolvedRequest:
        """Validate depth and resolve every dimension id the request mentions."""
        depth, dims = options.depth, options.dimensions
        if depth >= len(dims):
            raise DepthOutOfRangeError(f"Depth {depth} exceeds dimensions length {len(dims)}")

        dimension = self.registry.resolve(dims[depth])

        parent_items = order_parent_filters(dims, options.parent_filters)
        parents = [(self.registry.resolve_parent(k), v) for k, v in parent_items]

        filters = []
        for table_filter in options.filters:
            filter_dim = self.registry.resolve_filter(table_filter.field)
            validate_filter_operator(table_filter.operator)
            filters.append((filter_dim, table_filter))

        return ResolvedRequest(
            dimension=dimension,
            parents=parents,
            parent_items=parent_items,
            filters=filters,
        )

    def _build_select_exprs(self, dimension: Dimension, base_prefix: str) -> list[str]:
        exprs = []
        if dimension.id_expr:
            exprs.append(f"{render(dimension.id_expr, base_prefix)} AS dimension_id")
        exprs.append(f"{render(dimension.value_expr, base_prefix)} AS dimension_value")
        for metric in self.report.metrics:
            exprs.append(f"{render(metric.expr, base_prefix)} AS {metric.alias}")
        return exprs

    def _build_from_clause(self, joins, base_prefix: str) -> str:
        if not joins:
            return self.report.table
        lines = [f"{self.report.table} {self.report.alias}"]
        lines += [render(j.sql, base_prefix) for j in joins]
        return "\n".join(lines)

    def _build_where_conditions(
        self, resolved: ResolvedRequest, placeholders: Placeholders, base_prefix: str
    ) -> list[str]:
        """Date range first, then parent filters, then table filters.

        this order is the param order - don't shuffle it.
        """
        date_column = render(self.report.date_column, base_prefix)
        conditions = [
            date_predicate(self.dialect, date_column, placeholders.next(), placeholders.next())
        ]
        for dimension, value in resolved.parents:
            conditions.append(parent_filter_clause(dimension, value, placeholders, base_prefix))
        for dimension, table_filter in resolved.filters:
            conditions.append(
                table_filter_clause(dimension, table_filter, placeholders, base_prefix)
            )
        return conditions

    def _assemble_query(
        self,
        select_exprs: list[str],
        from_clause: str,
        where_conditions: list[str],
        group_by_exprs: list[str],
        order_by: str,
        limit: int,
    ) -> str:
        parts = ["SELECT\n  " + ",\n  ".join(select_exprs)]
        parts.append(f"FROM {from_clause}")
        parts.append("WHERE " + "\n  AND ".join(where_conditions))
        parts.append(f"GROUP BY {', '.join(group_by_exprs)}")
        parts.append(f"ORDER BY {order_by}")
        parts.append(f"LIMIT {limit}")
        return "\n".join(parts)


def format_sql(sql: str, dialect: Dialect) -> str:
    """Pretty-print sql for humans.

    only used for display. built queries are returned exactly as assembled
    since params are numbered against that text. if sqlglot can't parse it,
    hand back the raw sql rather than failing.
    """
    try:
        parsed = sqlglot.parse_one(sql, read=dialect.sqlglot_name)
        return parsed.sql(dialect=dialect.sqlglot_name, pretty=True)
    except Exception:
        return sql
