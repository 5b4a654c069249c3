"""Pydantic models for drillforge."""

from drillforge.models.catalog import (
    Dialect,
    Dimension,
    DimensionKind,
    JoinClause,
    Metric,
    Report,
)
from drillforge.models.performance import (
    AdsMetrics,
    CampaignPerformance,
    CampaignStatus,
    CrmMetrics,
    OnPageMetrics,
)
from drillforge.models.period import (
    Granularity,
    PeriodRate,
    PeriodRateRow,
    RateType,
    TimePeriod,
)
from drillforge.models.query import (
    BuiltQuery,
    DateRange,
    DetailQuery,
    DetailQueryOptions,
    Pagination,
    QueryOptions,
    QueryResult,
    TableFilter,
    TrackingIds,
)

__all__ = [
    "AdsMetrics",
    "BuiltQuery",
    "CampaignPerformance",
    "CampaignStatus",
    "CrmMetrics",
    "DateRange",
    "DetailQuery",
    "DetailQueryOptions",
    "Dialect",
    "Dimension",
    "DimensionKind",
    "Granularity",
    "JoinClause",
    "Metric",
    "OnPageMetrics",
    "Pagination",
    "PeriodRate",
    "PeriodRateRow",
    "QueryOptions",
    "QueryResult",
    "RateType",
    "Report",
    "TableFilter",
    "TimePeriod",
    "TrackingIds",
]
