"""Main ReportStore interface for drillforge."""

import logging
from collections.abc import Sequence
from datetime import date
from pathlib import Path

from drillforge.aggregator import CampaignPerformanceAggregator, QueryRunner
from drillforge.compiler.detail_builder import DetailQueryBuilder
from drillforge.compiler.period_builder import PeriodQueryBuilder
from drillforge.compiler.sql_builder import AggregateQueryBuilder
from drillforge.executor.duckdb_executor import DuckDBExecutor
from drillforge.models.performance import CampaignHierarchy, CampaignPerformance
from drillforge.models.period import Granularity, RateType, TimePeriod
from drillforge.models.query import (
    BuiltQuery,
    DateRange,
    DetailQuery,
    DetailQueryOptions,
    Pagination,
    QueryOptions,
    QueryResult,
)
from drillforge.parser.loader import ReportRegistry
from drillforge.periods import TimePeriodGenerator
from drillforge.settings import Settings, get_settings

logger = logging.getLogger(__name__)

CRM_REPORT = "crm"


class ReportStore:
    """Main interface for drillforge.

    wires the built-in catalogs (plus any extra directory) to the builders
    and a local DuckDB executor. the builders are created once per report
    and reused, they hold no per-request state.
    """

    def __init__(
        self,
        catalog_dir: str | Path | None = None,
        database_path: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the report store.

        Args:
            catalog_dir: Extra catalog directory layered on the built-in ones.
            database_path: Path to DuckDB file, or None for in-memory.
            settings: Overrides for the env-derived settings.
        """
        self.settings = settings or get_settings()
        self.registry = ReportRegistry.builtin()

        # load and validate catalogs upfront - fail fast if there are problems
        extra = catalog_dir or self.settings.catalog_dir
        if extra:
            self.registry.load_directory(Path(extra))

        self.executor = DuckDBExecutor(database_path or self.settings.database_path)
        self._builders: dict[str, AggregateQueryBuilder] = {}

    def builder(self, report: str) -> AggregateQueryBuilder:
        if report not in self._builders:
            self._builders[report] = AggregateQueryBuilder(self.registry.dimensions(report))
        return self._builders[report]

    def get_sql(self, report: str, options: QueryOptions) -> BuiltQuery:
        """Build the aggregate query without executing it."""
        return self.builder(report).build_query(options)

    def query(self, report: str, options: QueryOptions) -> QueryResult:
        # two-step: build, then execute
        built = self.get_sql(report, options)
        return self.executor.execute_built(built)

    def detail_sql(
        self,
        metric_id: str,
        options: DetailQueryOptions,
        pagination: Pagination | None = None,
    ) -> DetailQuery:
        builder = DetailQueryBuilder(self.registry.dimensions(CRM_REPORT))
        return builder.build_detail_query(metric_id, options, pagination)

    def periods(
        self,
        start: date,
        end: date,
        granularity: Granularity | str,
        today: date | None = None,
    ) -> list[TimePeriod]:
        return TimePeriodGenerator(today).generate(start, end, granularity)

    def period_sql(
        self,
        rate_type: RateType | str,
        dimension: str,
        periods: list[TimePeriod],
        parent_filters: dict[str, str] | None = None,
        dimensions: list[str] | None = None,
    ) -> BuiltQuery:
        builder = PeriodQueryBuilder(self.registry.dimensions(CRM_REPORT))
        return builder.build_query(rate_type, dimension, periods, parent_filters, dimensions)

    async def campaign_performance(
        self,
        campaign_ids: Sequence[str],
        date_range: DateRange,
        crm_runner: QueryRunner | None = None,
        today: date | None = None,
    ) -> list[CampaignPerformance]:
        """Merged per-campaign performance.

        ads and on-page data come from the local DuckDB. the crm store is
        usually somewhere else, so its runner can be passed in.
        """
        aggregator = self._aggregator(crm_runner)
        return await aggregator.get_campaign_performance(campaign_ids, date_range, today)

    async def campaign_hierarchy(
        self, campaign_id: str, date_range: DateRange
    ) -> CampaignHierarchy:
        """Adsets, ads and landing pages under one campaign, all from the local DuckDB."""
        return await self._aggregator().get_campaign_hierarchy(campaign_id, date_range)

    def _aggregator(self, crm_runner: QueryRunner | None = None) -> CampaignPerformanceAggregator:
        return CampaignPerformanceAggregator(
            ads_runner=self.executor.run,
            crm_runner=crm_runner or self.executor.run,
            onpage_runner=self.executor.run,
            settings=self.settings,
        )

    def list_reports(self) -> list[dict]:
        return [
            {"name": r.name, "dialect": r.dialect.value, "description": r.description}
            for r in self.registry.reports.values()
        ]

    def list_dimensions(self, report: str | None = None) -> list[dict]:
        """List dimensions, for one report or all of them."""
        names = [report] if report else list(self.registry.reports)
        dims = []
        for name in names:
            for dim in self.registry.dimensions(name):
                dims.append(
                    {
                        "id": dim.id,
                        "kind": dim.kind.value,
                        "report": name,
                        "label": dim.label,
                    }
                )
        return dims

    def validate(self) -> list[str]:
        """Build a depth-0 query for every dimension. Returns list of errors."""
        errors = []
        date_range = DateRange(start=date(2000, 1, 1), end=date(2000, 1, 1))
        for name in self.registry.reports:
            for dim in self.registry.dimensions(name):
                try:
                    self.get_sql(name, QueryOptions(date_range=date_range, dimensions=[dim.id]))
                except Exception as e:
                    errors.append(f"{name}.{dim.id}: {e}")
        if errors:
            logger.warning("%d dimension(s) failed to build", len(errors))
        return errors

    def close(self) -> None:
        """Close database connection."""
        self.executor.close()

    def __enter__(self) -> "ReportStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
