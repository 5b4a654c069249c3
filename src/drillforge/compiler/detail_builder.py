"""Row-level detail queries over the CRM store.

when someone clicks a metric cell we show the rows behind it. each metric
id gets its own hand-written template: detail rows need joins the
aggregate never does (cancel reasons, upsell invoices), so these are not
derived from the dimension registry. the filter side is shared though -
parent filters go through the same clause builders and assemble_params.

every template returns a select and a count with one WHERE and one param
prefix. the select is grouped by the template key and the count is a
distinct count of the same key, so both see one row per key. pagination
params only ever go on the select.
"""

import logging
from dataclasses import dataclass, field

from drillforge.compiler.clauses import (
    assemble_params,
    collect_joins,
    order_parent_filters,
    parent_filter_clause,
    render,
)
from drillforge.compiler.dialect import Placeholders, date_predicate
from drillforge.errors import UnknownMetricError
from drillforge.models.catalog import Dialect, JoinClause, Report
from drillforge.models.query import DetailQuery, DetailQueryOptions, Pagination
from drillforge.parser.loader import DimensionRegistry

logger = logging.getLogger(__name__)

DEFAULT_DETAIL_LIMIT = 50

# ad network name (lowercased) -> crm source values it shows up as
SOURCE_MAPPING: dict[str, list[str]] = {
    "google ads": ["adwords", "google"],
    "facebook": ["facebook", "meta", "fb"],
}


def _join(alias: str, sql: str) -> JoinClause:
    return JoinClause(alias=alias, sql=sql)


# --- shared fragments ---

CUSTOMER = _join("c", "INNER JOIN customer c ON s.customer_id = c.id")
TRIAL_LEFT = _join("i", "LEFT JOIN invoice i ON i.subscription_id = s.id AND i.type = 1")
TRIAL_INNER = _join(
    "i", "INNER JOIN invoice i ON i.subscription_id = s.id AND i.type = 1 AND i.deleted = 0"
)
TRIAL_APPROVED = _join(
    "i",
    "INNER JOIN invoice i ON i.subscription_id = s.id AND i.type = 1 "
    "AND i.is_marked = 1 AND i.deleted = 0",
)
INVOICE_PRODUCT = _join("ip", "LEFT JOIN invoice_product ip ON ip.invoice_id = i.id")
PRODUCT = _join("p", "LEFT JOIN product p ON p.id = ip.product_id")
SOURCE = _join("sr", "LEFT JOIN source sr ON sr.id = s.source_id")
CANCEL_REASON = _join(
    "scr", "LEFT JOIN subscription_cancel_reason scr ON scr.subscription_id = s.id"
)
CANCEL_CAPTION = _join("cr", "LEFT JOIN cancel_reason cr ON cr.id = scr.cancel_reason_id")
UPSELL = _join(
    "uo",
    "INNER JOIN invoice uo ON uo.customer_id = s.customer_id "
    "AND uo.tag LIKE CONCAT('%parent-sub-id=', s.id, '%')",
)
PROCESSED = _join("ipr", "INNER JOIN invoice_proccessed ipr ON ipr.invoice_id = i.id")

UPSELL_EXCLUSION = "(i.tag IS NULL OR i.tag NOT LIKE '%parent-sub-id=%')"

# select expressions starting with one of these are aggregates and stay out
# of GROUP BY
AGGREGATE_PREFIXES = ("MAX(", "MIN(", "SUM(", "COUNT(", "GROUP_CONCAT(")


def _tracking_validation(alias: str) -> list[str]:
    """Rows need all three tracking ids to be attributable to an ad."""
    conditions = []
    for column in ("tracking_id_4", "tracking_id_2", "tracking_id"):
        conditions.append(f"{alias}.{column} IS NOT NULL")
        conditions.append(f"{alias}.{column} != 'null'")
    return conditions


def _expression(column: str) -> str:
    """A select column without its alias."""
    return column.rsplit(" AS ", 1)[0]


# a subscription can have several products and several cancel reasons, so
# those columns are aggregated and everything else is grouped
PRODUCT_NAMES = "GROUP_CONCAT(DISTINCT COALESCE(p.product_name, '(not set)')) AS productName"
CANCEL_CAPTION_COLUMN = "MAX(cr.caption) AS cancelReason"

SUBSCRIPTION_COLUMNS = [
    "s.id AS id",
    "s.id AS subscriptionId",
    "CONCAT(c.first_name, ' ', c.last_name) AS customerName",
    "c.email AS customerEmail",
    "c.id AS customerId",
    "COALESCE(sr.source, '(not set)') AS source",
    "s.tracking_id AS trackingId1",
    "s.tracking_id_2 AS trackingId2",
    "s.tracking_id_3 AS trackingId3",
    "s.tracking_id_4 AS trackingId4",
    "s.tracking_id_5 AS trackingId5",
    "COALESCE(i.total, s.trial_price, 0) AS amount",
    "s.date_create AS date",
    PRODUCT_NAMES,
    "c.country",
    "MAX(IF(i.is_marked = 1, TRUE, FALSE)) AS isApproved",
    "s.status AS subscriptionStatus",
    CANCEL_CAPTION_COLUMN,
    "s.canceled_reason_about AS cancelReasonAbout",
    "c.date_registered AS customerDateRegistered",
]

SUBSCRIPTION_JOINS = [CUSTOMER, INVOICE_PRODUCT, PRODUCT, SOURCE, CANCEL_REASON, CANCEL_CAPTION]


@dataclass(frozen=True)
class DetailTemplate:
    """How to fetch the rows behind one metric.

    key is the row identity: the select groups by it and the count is
    COUNT(DISTINCT key), so a join that fans out (cancel reasons, products)
    can't make the page and the total disagree. base_alias is what {base}
    renders to in parent filter expressions, so crm dimensions work against
    invoice-based templates too.
    """

    table: str
    base_alias: str
    key: str
    date_column: str
    columns: list[str]
    joins: list[JoinClause]
    conditions: list[str] = field(default_factory=list)

    @property
    def count_expr(self) -> str:
        return f"COUNT(DISTINCT {self.key})"

    @property
    def group_by(self) -> list[str]:
        """The key, then every non-aggregate column and the sort column."""
        exprs = [self.key]
        exprs += [_expression(c) for c in self.columns if not c.startswith(AGGREGATE_PREFIXES)]
        exprs.append(self.date_column)
        return list(dict.fromkeys(exprs))

    @property
    def tracking_columns(self) -> str:
        a = self.base_alias
        return f"({a}.tracking_id_4, {a}.tracking_id_2, {a}.tracking_id)"


def _subscription_template(
    trial_join: JoinClause,
    conditions: list[str],
    extra_joins: list[JoinClause] | None = None,
    extra_columns: list[str] | None = None,
    key: str = "s.id",
) -> DetailTemplate:
    # trial invoice has to come before invoice_product, which joins on it
    joins = [SUBSCRIPTION_JOINS[0], trial_join, *SUBSCRIPTION_JOINS[1:], *(extra_joins or [])]
    return DetailTemplate(
        table="subscription s",
        base_alias="s",
        key=key,
        date_column="s.date_create",
        columns=[*SUBSCRIPTION_COLUMNS, *(extra_columns or [])],
        joins=joins,
        conditions=conditions,
    )


def _processed_template(outcome_column: str) -> DetailTemplate:
    """Trials as the processor saw them, one row per processed invoice.

    outcome_column decides isApproved: date_paid for pay rate, date_bought
    for buy rate. refunds (type 4) never count as trials.
    """
    return DetailTemplate(
        table="invoice i",
        base_alias="s",
        key="ipr.id",
        date_column="i.invoice_date",
        columns=[
            "ipr.id AS id",
            "i.id AS invoiceId",
            "s.id AS subscriptionId",
            "CONCAT(c.first_name, ' ', c.last_name) AS customerName",
            "c.email AS customerEmail",
            "c.id AS customerId",
            "COALESCE(sr.source, '(not set)') AS source",
            "s.tracking_id AS trackingId1",
            "s.tracking_id_2 AS trackingId2",
            "s.tracking_id_3 AS trackingId3",
            "s.tracking_id_4 AS trackingId4",
            "s.tracking_id_5 AS trackingId5",
            "COALESCE(i.total, 0) AS amount",
            "i.invoice_date AS date",
            PRODUCT_NAMES,
            "c.country",
            f"IF(ipr.{outcome_column} IS NOT NULL, TRUE, FALSE) AS isApproved",
            "s.status AS subscriptionStatus",
            CANCEL_CAPTION_COLUMN,
            "s.canceled_reason_about AS cancelReasonAbout",
            "c.date_registered AS customerDateRegistered",
            "ipr.date_bought AS dateBought",
            "ipr.date_paid AS datePaid",
        ],
        joins=[
            PROCESSED,
            _join("s", "INNER JOIN subscription s ON i.subscription_id = s.id"),
            CUSTOMER,
            INVOICE_PRODUCT,
            PRODUCT,
            SOURCE,
            CANCEL_REASON,
            CANCEL_CAPTION,
        ],
        conditions=["i.type != 4"],
    )


TEMPLATES: dict[str, DetailTemplate] = {
    # marketing report: everything attributable to an ad
    "crmSubscriptions": _subscription_template(
        TRIAL_LEFT, ["s.deleted = 0", UPSELL_EXCLUSION, *_tracking_validation("s")]
    ),
    "approvedSales": _subscription_template(
        TRIAL_APPROVED, ["s.deleted = 0", UPSELL_EXCLUSION, *_tracking_validation("s")]
    ),
    # dashboard drilldowns
    "subscriptions": _subscription_template(TRIAL_LEFT, [UPSELL_EXCLUSION]),
    "trials": _subscription_template(TRIAL_INNER, [UPSELL_EXCLUSION]),
    "trialsApproved": _subscription_template(TRIAL_APPROVED, [UPSELL_EXCLUSION], key="i.id"),
    "customers": _subscription_template(
        TRIAL_LEFT,
        [UPSELL_EXCLUSION, "DATE(c.date_registered) = DATE(s.date_create)"],
        key="c.id",
    ),
    "upsells": _subscription_template(
        TRIAL_LEFT,
        [],
        extra_joins=[UPSELL],
        extra_columns=[
            "uo.id AS upsellInvoiceId",
            "IF(uo.is_marked = 1, TRUE, FALSE) AS upsellApproved",
        ],
        key="uo.id",
    ),
    # validation-rate drilldowns
    "payRateTrials": _processed_template("date_paid"),
    "buyRateTrials": _processed_template("date_bought"),
    # one-time sales are standalone invoices, no subscription behind them
    "ots": DetailTemplate(
        table="invoice i",
        base_alias="i",
        key="i.id",
        date_column="i.order_date",
        columns=[
            "i.id AS id",
            "i.id AS invoiceId",
            "CONCAT(c.first_name, ' ', c.last_name) AS customerName",
            "c.email AS customerEmail",
            "c.id AS customerId",
            "COALESCE(sr.source, '(not set)') AS source",
            "i.tracking_id AS trackingId1",
            "i.tracking_id_2 AS trackingId2",
            "i.tracking_id_4 AS trackingId4",
            "i.total AS amount",
            "i.order_date AS date",
            PRODUCT_NAMES,
            "c.country",
            "MAX(IF(i.is_marked = 1, TRUE, FALSE)) AS isApproved",
        ],
        joins=[
            _join("c", "LEFT JOIN customer c ON c.id = i.customer_id"),
            INVOICE_PRODUCT,
            PRODUCT,
            _join("sr", "LEFT JOIN source sr ON sr.id = i.source_id"),
        ],
        conditions=["i.type = 3", "i.deleted = 0"],
    ),
}

DETAIL_METRIC_IDS = tuple(TEMPLATES)


def source_aliases(network: str) -> list[str] | None:
    """CRM source values for an ad network, None if we don't know the network."""
    return SOURCE_MAPPING.get(network.lower())


class DetailQueryBuilder:
    """Builds paired select/count detail queries against the crm report."""

    def __init__(self, registry: DimensionRegistry) -> None:
        if registry.report.dialect is not Dialect.MARIADB:
            raise ValueError(f"Detail queries need a mariadb report, got '{registry.report.name}'")
        self.registry = registry
        self.report: Report = registry.report

    def build_detail_query(
        self,
        metric_id: str,
        options: DetailQueryOptions,
        pagination: Pagination | None = None,
    ) -> DetailQuery:
        template = TEMPLATES.get(metric_id)
        if template is None:
            raise UnknownMetricError(f"Unknown metricId: {metric_id}")

        # resolve everything before building any sql
        parent_items = order_parent_filters(options.dimensions, options.parent_filters)
        parents = [(self.registry.resolve_parent(k), v) for k, v in parent_items]

        joins = collect_joins(template.joins, [d for d, _ in parents if d.filter_uses_joins])
        base_prefix = f"{template.base_alias}."

        placeholders = Placeholders(Dialect.MARIADB)
        where = [
            date_predicate(
                Dialect.MARIADB, template.date_column, placeholders.next(), placeholders.next()
            ),
            *template.conditions,
        ]
        for dimension, value in parents:
            where.append(parent_filter_clause(dimension, value, placeholders, base_prefix))

        params = assemble_params(Dialect.MARIADB, options.date_range, parent_items)

        if options.tracking_ids:
            tuples = ", ".join("(?, ?, ?)" for _ in options.tracking_ids)
            where.append(f"{template.tracking_columns} IN ({tuples})")
            for ids in options.tracking_ids:
                params.extend([ids.campaign_id, ids.adset_id, ids.ad_id])

        if options.network:
            aliases = source_aliases(options.network)
            if aliases is None:
                logger.debug("no crm source mapping for %r, not filtering", options.network)
            else:
                where.append(f"LOWER(sr.source) IN ({', '.join('?' for _ in aliases)})")
                params.extend(aliases)

        if options.exact_date:
            where.append(f"DATE({template.date_column}) = DATE(?)")
            params.append(options.exact_date.isoformat())

        from_clause = "\n".join([template.table, *(render(j.sql, base_prefix) for j in joins)])
        where_clause = "WHERE " + "\n  AND ".join(where)

        if pagination is None:
            limit_clause, page_params = "LIMIT ?", [DEFAULT_DETAIL_LIMIT]
        else:
            limit_clause = "LIMIT ? OFFSET ?"
            page_params = [pagination.page_size, pagination.offset]

        query = "\n".join(
            [
                "SELECT\n  " + ",\n  ".join(template.columns),
                f"FROM {from_clause}",
                where_clause,
                f"GROUP BY {', '.join(template.group_by)}",
                f"ORDER BY {template.date_column} DESC",
                limit_clause,
            ]
        )
        count_query = "\n".join(
            [f"SELECT {template.count_expr} AS total", f"FROM {from_clause}", where_clause]
        )

        logger.debug("built %s detail query: %s %s", metric_id, query, params)
        return DetailQuery(
            query=query,
            params=[*params, *page_params],
            count_query=count_query,
            count_params=list(params),
        )
