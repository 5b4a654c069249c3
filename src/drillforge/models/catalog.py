"""Pydantic models for report catalogs.

a report is one fact table in one store, plus the dimensions you can drill
through and the metrics computed at every level. catalogs live in yaml so
adding a dimension is a data change, not a new branch in the builder.
"""

from enum import Enum

from pydantic import BaseModel, Field, model_validator

# placeholder for the base table qualifier inside catalog expressions.
# becomes "pv." when the query aliases the fact table, "" when it doesn't
BASE_TOKEN = "{base}"


class Dialect(str, Enum):
    """SQL dialect of the store a report lives in."""

    POSTGRES = "postgres"  # ad spend / on-page analytics, $1 placeholders
    MARIADB = "mariadb"  # crm, ? placeholders

    @property
    def sqlglot_name(self) -> str:
        # sqlglot has no separate mariadb dialect, mysql parses it fine
        return "postgres" if self is Dialect.POSTGRES else "mysql"


class DimensionKind(str, Enum):
    """The three closed dimension categories.

    plain dimensions are columns on the fact table. enriched and
    classification dimensions hold a foreign id that needs joins to get a
    display name, so they also emit dimension_id for the next drill level.
    """

    PLAIN = "plain"
    ENRICHED = "enriched"
    CLASSIFICATION = "classification"


class JoinClause(BaseModel):
    """A join fragment, deduplicated by its target alias."""

    alias: str
    sql: str


class Dimension(BaseModel):
    """A drillable grouping axis."""

    id: str
    kind: DimensionKind = DimensionKind.PLAIN
    label: str | None = None
    value_expr: str  # rendered AS dimension_value
    id_expr: str | None = None  # rendered AS dimension_id (enriched/classification)
    group_by: list[str] = Field(default_factory=list)
    filter_expr: str | None = None  # used for parent filters and table filters
    joins: list[JoinClause] = Field(default_factory=list)
    filter_uses_joins: bool | None = None
    is_date: bool = False

    @model_validator(mode="after")
    def _fill_defaults(self) -> "Dimension":
        # most plain dimensions are a single column used everywhere
        if not self.group_by:
            self.group_by = [self.value_expr]
        if self.filter_expr is None:
            self.filter_expr = self.value_expr
        # classification filters go through the mapping tables, enriched
        # filters compare against the raw id on the fact table
        if self.filter_uses_joins is None:
            self.filter_uses_joins = self.kind == DimensionKind.CLASSIFICATION
        if self.kind != DimensionKind.PLAIN and not self.joins and self.id_expr is None:
            raise ValueError(
                f"Dimension '{self.id}' is {self.kind.value} but declares no joins or id_expr"
            )
        return self

    @property
    def emits_id(self) -> bool:
        return self.id_expr is not None

    def expressions(self) -> list[str]:
        """Every sql expression this dimension contributes, for validation."""
        exprs = [self.value_expr, *self.group_by]
        if self.id_expr:
            exprs.append(self.id_expr)
        if self.filter_expr:
            exprs.append(self.filter_expr)
        return exprs


class Metric(BaseModel):
    """An aggregate column computed at every drill level.

    id is what callers sort by (camelCase, e.g. uniqueVisitors), alias is
    the output column (unique_visitors).
    """

    id: str
    alias: str
    expr: str
    description: str | None = None


class Report(BaseModel):
    """One fact table with its dimension registry and metric set."""

    name: str
    description: str | None = None
    dialect: Dialect
    table: str
    alias: str
    date_column: str
    default_sort: str
    base_joins: list[JoinClause] = Field(default_factory=list)
    metrics: list[Metric] = Field(default_factory=list)
    dimensions: list[Dimension] = Field(default_factory=list)

    def get_metric(self, metric_id: str) -> Metric | None:
        for metric in self.metrics:
            if metric.id == metric_id:
                return metric
        return None

    def get_dimension(self, dimension_id: str) -> Dimension | None:
        for dimension in self.dimensions:
            if dimension.id == dimension_id:
                return dimension
        return None
