"""Filter, sort and limit clause builders shared by every query builder.

the one rule everything here protects: params are always
[start, end, parent filter values..., table filter values...] and the
placeholders in the sql are numbered in exactly that order. assemble_params
owns the values, the clause builders only emit placeholders, and the
builders check the two agree before handing a query back.
"""

from collections.abc import Iterable, Sequence
from typing import Any

from drillforge.compiler.dialect import Placeholders, as_text, date_params, pattern_match
from drillforge.errors import InvalidFilterError, UnsafeLiteralError
from drillforge.models.catalog import BASE_TOKEN, Dialect, Dimension, JoinClause, Report
from drillforge.models.query import DateRange, TableFilter

# parent filter value meaning "this dimension was NULL on the parent row"
UNKNOWN = "Unknown"

DEFAULT_LIMIT = 1000
MAX_LIMIT = 10000

# ORDER BY direction can't be a bind param, so it's the one literal we
# interpolate. exact match only
SORT_DIRECTIONS = frozenset({"ASC", "DESC"})

FILTER_OPERATORS = frozenset({"equals", "not_equals", "contains", "not_contains"})


def render(expr: str, base_prefix: str) -> str:
    """Qualify a catalog expression for the current FROM clause."""
    return expr.replace(BASE_TOKEN, base_prefix)


def order_parent_filters(
    dimensions: Sequence[str], parent_filters: dict[str, str]
) -> list[tuple[str, str]]:
    """Parent filters in ancestor order.

    keys on the drill path come in path order; anything else (a filter on a
    dimension that isn't on the path) follows in the order it was given.
    """
    ordered: list[tuple[str, str]] = []
    seen: set[str] = set()
    for dim_id in dimensions:
        if dim_id in parent_filters and dim_id not in seen:
            ordered.append((dim_id, parent_filters[dim_id]))
            seen.add(dim_id)
    for dim_id, value in parent_filters.items():
        if dim_id not in seen:
            ordered.append((dim_id, value))
    return ordered


def filter_bind_value(table_filter: TableFilter) -> str | None:
    """The value a table filter binds, or None if it binds nothing."""
    operator = table_filter.operator
    if operator in ("equals", "not_equals"):
        return table_filter.value or None
    if operator in ("contains", "not_contains"):
        return f"%{table_filter.value}%"
    raise InvalidFilterError(f"Unknown filter operator: {operator}")


def parent_params(parent_filters: Iterable[tuple[str, str]]) -> list[str]:
    """Values bound by parent filters, in the order given. "Unknown" binds nothing."""
    return [value for _, value in parent_filters if value != UNKNOWN]


def assemble_params(
    dialect: Dialect,
    date_range: DateRange,
    parent_filters: Iterable[tuple[str, str]],
    filters: Iterable[TableFilter] = (),
) -> list[Any]:
    """Build the ordered param list for a drill-down query.

    parent_filters must already be in ancestor order (see
    order_parent_filters). "Unknown" parents and empty equals/not_equals
    filters become IS NULL / IS NOT NULL and bind nothing.
    """
    params: list[Any] = date_params(dialect, date_range.start, date_range.end)
    params.extend(parent_params(parent_filters))
    for table_filter in filters:
        value = filter_bind_value(table_filter)
        if value is not None:
            params.append(value)
    return params


def parent_filter_clause(
    dimension: Dimension, value: str, placeholders: Placeholders, base_prefix: str
) -> str:
    expr = render(dimension.filter_expr, base_prefix)
    if value == UNKNOWN:
        return f"{expr} IS NULL"
    return f"{expr} = {placeholders.next()}"


def table_filter_clause(
    dimension: Dimension,
    table_filter: TableFilter,
    placeholders: Placeholders,
    base_prefix: str,
) -> str:
    dialect = placeholders.dialect
    expr = render(dimension.filter_expr, base_prefix)
    operator = table_filter.operator

    if operator == "equals":
        if not table_filter.value:
            return f"{expr} IS NULL"
        return f"LOWER({as_text(dialect, expr)}) = LOWER({placeholders.next()})"

    if operator == "not_equals":
        if not table_filter.value:
            return f"{expr} IS NOT NULL"
        value_ph = placeholders.next()
        return f"({expr} IS NULL OR LOWER({as_text(dialect, expr)}) != LOWER({value_ph}))"

    if operator == "contains":
        return pattern_match(dialect, expr, placeholders.next())

    if operator == "not_contains":
        negated = pattern_match(dialect, expr, placeholders.next(), negate=True)
        return f"({expr} IS NULL OR {negated})"

    raise InvalidFilterError(f"Unknown filter operator: {operator}")


def validate_filter_operator(operator: str) -> str:
    if operator not in FILTER_OPERATORS:
        raise InvalidFilterError(f"Unknown filter operator: {operator}")
    return operator


def validate_sort_direction(direction: str) -> str:
    if direction not in SORT_DIRECTIONS:
        raise UnsafeLiteralError(f"Invalid sort direction: {direction!r}")
    return direction


def order_by_clause(
    report: Report, dimension: Dimension, sort_by: str | None, direction: str
) -> str:
    """ORDER BY body for one drill level.

    date dimensions always read most recent first. otherwise sort_by is
    looked up in the report's metrics, falling back to the default metric
    for anything it doesn't know.
    """
    if dimension.is_date:
        return "dimension_value DESC"
    metric = report.get_metric(sort_by) if sort_by else None
    if metric is None:
        metric = report.get_metric(report.default_sort)
    return f"{metric.alias} {validate_sort_direction(direction)}"


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(MAX_LIMIT, int(limit)))


def collect_joins(
    base_joins: Iterable[JoinClause], dimensions: Iterable[Dimension]
) -> list[JoinClause]:
    """Base joins then each dimension's joins, deduplicated by alias (first wins)."""
    joins: list[JoinClause] = []
    aliases: set[str] = set()
    for join in [*base_joins, *(j for d in dimensions for j in d.joins)]:
        if join.alias in aliases:
            continue
        aliases.add(join.alias)
        joins.append(join)
    return joins
