"""Pydantic models for drill-down requests and built queries.

requests are built fresh per call and never mutated by the builders. the
builders only ever return a BuiltQuery / DetailQuery - executing it is
somebody else's job.
"""

from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

FilterOperator = Literal["equals", "not_equals", "contains", "not_contains"]
SortDirection = Literal["ASC", "DESC"]


class DateRange(BaseModel):
    """Inclusive range of store-local calendar days."""

    start: date
    end: date


class TableFilter(BaseModel):
    """A user filter from the table header, e.g. urlPath contains "mobile"."""

    field: str
    # kept as a plain str so a bad operator surfaces as our own error
    # at build time rather than a pydantic one at the boundary
    operator: str
    value: str = ""


class QueryOptions(BaseModel):
    """One drill-down request: group by dimensions[depth] under parent_filters."""

    date_range: DateRange
    dimensions: list[str]
    depth: int = Field(default=0, ge=0)
    parent_filters: dict[str, str] = Field(default_factory=dict)
    filters: list[TableFilter] = Field(default_factory=list)
    sort_by: str | None = None
    # plain str on purpose, validated against the allow-list in the builder
    sort_direction: str = "DESC"
    limit: int | None = None


class BuiltQuery(BaseModel):
    """A query plus its positional params, in placeholder order."""

    query: str
    params: list[Any]


class TrackingIds(BaseModel):
    """campaign / adset / ad ids resolved from an ads row."""

    campaign_id: str
    adset_id: str
    ad_id: str


class DetailQueryOptions(BaseModel):
    """Filters for a row-level detail view.

    parent_filters use the crm registry. tracking_ids, network and exact_date are
    resolved from an ads-side row that the user clicked.
    """

    date_range: DateRange
    # drill path the parent filters came from, only used to order them
    dimensions: list[str] = Field(default_factory=list)
    parent_filters: dict[str, str] = Field(default_factory=dict)
    tracking_ids: list[TrackingIds] = Field(default_factory=list)
    network: str | None = None
    exact_date: date | None = None


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1, le=1000)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class DetailQuery(BaseModel):
    """Paired select + count sharing one WHERE predicate."""

    query: str
    params: list[Any]
    count_query: str
    count_params: list[Any]

    @model_validator(mode="after")
    def _count_is_prefix(self) -> "DetailQuery":
        if self.params[: len(self.count_params)] != self.count_params:
            raise ValueError("count params must be a prefix of the select params")
        return self


class QueryResult(BaseModel):
    """Result of executing a built query.

    the sql and params ride along with the data so a caller can always see
    exactly what ran.
    """

    sql: str
    params: list[Any] = Field(default_factory=list)
    columns: list[str]
    data: list[dict]
    row_count: int
    execution_time_ms: float
