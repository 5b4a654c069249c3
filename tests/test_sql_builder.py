"""Tests for the aggregate drill-down query builder."""

import pytest

from drillforge.compiler.sql_builder import AggregateQueryBuilder, format_sql
from drillforge.errors import (
    DepthOutOfRangeError,
    InvalidFilterError,
    UnknownDimensionError,
    UnsafeLiteralError,
)
from drillforge.executor.duckdb_executor import DuckDBExecutor
from drillforge.models.catalog import Dialect
from drillforge.models.query import DateRange, QueryOptions, TableFilter
from drillforge.parser.loader import DimensionRegistry


def _options(january: DateRange, dimensions: list[str], **kwargs) -> QueryOptions:
    return QueryOptions(date_range=january, dimensions=dimensions, **kwargs)


class TestAggregateQueryBuilder:
    def test_plain_dimension(self, onpage: DimensionRegistry, january: DateRange):
        """A plain top-level dimension needs no joins and no alias."""
        built = AggregateQueryBuilder(onpage).build_query(_options(january, ["urlPath"]))

        assert built.query.startswith("SELECT\n  url_path AS dimension_value,\n  COUNT(*) AS")
        assert built.query.endswith(
            "FROM remote_session_tracker.event_page_view_enriched_v2\n"
            "WHERE created_at::date BETWEEN $1::date AND $2::date\n"
            "GROUP BY url_path\n"
            "ORDER BY page_views DESC\n"
            "LIMIT 1000"
        )
        assert "dimension_id" not in built.query
        assert built.params == ["2026-01-01", "2026-01-31"]

    def test_every_metric_selected(self, onpage: DimensionRegistry, january: DateRange):
        """Each level carries the report's full metric set."""
        built = AggregateQueryBuilder(onpage).build_query(_options(january, ["urlPath"]))
        for metric in onpage.report.metrics:
            assert f"AS {metric.alias}" in built.query

    def test_cta_clicks_read_page_elements(self, onpage: DimensionRegistry, january: DateRange):
        """CTA clicks come from the page_elements json, keyed by element name."""
        built = AggregateQueryBuilder(onpage).build_query(_options(january, ["urlPath"]))
        assert "AND jsonb_path_exists(page_elements, '$.keyvalue() ? (@.key like_regex" in (
            built.query
        )
        assert "cta_clicked" not in built.query
        assert "AS cta_clicks" in built.query

    def test_enriched_dimension_joins_and_aliases(
        self, onpage: DimensionRegistry, january: DateRange
    ):
        """Grouping by an enriched dimension pulls in its join and emits an id."""
        built = AggregateQueryBuilder(onpage).build_query(_options(january, ["campaign"]))

        assert built.query.startswith(
            "SELECT\n"
            "  pv.utm_campaign::text AS dimension_id,\n"
            "  COALESCE(MAX(mas.campaign_name), pv.utm_campaign::text) AS dimension_value,"
        )
        assert "FROM remote_session_tracker.event_page_view_enriched_v2 pv\nLEFT JOIN (" in (
            built.query
        )
        assert "WHERE pv.created_at::date BETWEEN $1::date AND $2::date" in built.query
        assert "GROUP BY pv.utm_campaign::text" in built.query
        assert "COUNT(DISTINCT pv.ff_visitor_id)" in built.query

    def test_drill_down_with_parents(self, onpage: DimensionRegistry, january: DateRange):
        """Parents filter in path order, enriched parents skip their joins."""
        options = _options(
            january,
            ["campaign", "adset", "urlPath"],
            depth=2,
            parent_filters={"adset": "Unknown", "campaign": "123"},
        )
        built = AggregateQueryBuilder(onpage).build_query(options)

        assert "JOIN" not in built.query
        assert (
            "WHERE created_at::date BETWEEN $1::date AND $2::date\n"
            "  AND utm_campaign::text = $3\n"
            "  AND utm_content::text IS NULL\n"
        ) in built.query
        assert built.params == ["2026-01-01", "2026-01-31", "123"]

    def test_classification_parent_needs_joins(
        self, marketing: DimensionRegistry, january: DateRange
    ):
        """Filtering on a classification dimension brings its joins along."""
        options = _options(
            january,
            ["classifiedProduct", "network"],
            depth=1,
            parent_filters={"classifiedProduct": "7"},
        )
        built = AggregateQueryBuilder(marketing).build_query(options)

        assert "FROM merged_ads_spending m\nLEFT JOIN app_campaign_classifications cc" in (
            built.query
        )
        assert "ON m.campaign_id = cc.campaign_id" in built.query
        assert "LEFT JOIN app_products ap ON cc.product_id = ap.id" in built.query
        assert "AND ap.id::text = $3" in built.query
        assert "GROUP BY m.network" in built.query
        assert built.params == ["2026-01-01", "2026-01-31", "7"]

    def test_table_filters_follow_parents(self, onpage: DimensionRegistry, january: DateRange):
        """Filter placeholders continue the numbering after the parents."""
        options = _options(
            january,
            ["campaign", "urlPath"],
            depth=1,
            parent_filters={"campaign": "123"},
            filters=[
                TableFilter(field="urlPath", operator="contains", value="offer"),
                TableFilter(field="deviceType", operator="equals", value=""),
                TableFilter(field="osName", operator="not_equals", value="iOS"),
            ],
        )
        built = AggregateQueryBuilder(onpage).build_query(options)

        assert "AND url_path::text ILIKE $4" in built.query
        assert "AND device_type IS NULL" in built.query
        assert "AND (os_name IS NULL OR LOWER(os_name::text) != LOWER($5))" in built.query
        assert "$6" not in built.query
        assert built.params == ["2026-01-01", "2026-01-31", "123", "%offer%", "iOS"]

    def test_mariadb_report(self, crm: DimensionRegistry, january: DateRange):
        """The crm report uses ? placeholders and its base joins."""
        options = _options(
            january,
            ["country", "product"],
            depth=1,
            parent_filters={"country": "US"},
            sort_by="trialsApproved",
            sort_direction="ASC",
        )
        built = AggregateQueryBuilder(crm).build_query(options)

        assert "FROM subscription s\nLEFT JOIN customer c ON c.id = s.customer_id" in built.query
        assert "WHERE s.date_create BETWEEN ? AND ?\n  AND UPPER(c.country) = ?" in built.query
        assert "$" not in built.query
        assert "ORDER BY trials_approved ASC" in built.query
        assert built.params == ["2026-01-01 00:00:00", "2026-01-31 23:59:59", "US"]

    def test_date_dimension_order(self, crm: DimensionRegistry, january: DateRange):
        """Date levels are ordered newest first whatever the sort request."""
        options = _options(january, ["date"], sort_by="customers", sort_direction="ASC")
        built = AggregateQueryBuilder(crm).build_query(options)
        assert "ORDER BY dimension_value DESC" in built.query

    def test_limit_is_clamped(self, onpage: DimensionRegistry, january: DateRange):
        """Out-of-range limits are clamped, not rejected."""
        builder = AggregateQueryBuilder(onpage)
        assert builder.build_query(_options(january, ["urlPath"], limit=99999)).query.endswith(
            "LIMIT 10000"
        )
        assert builder.build_query(_options(january, ["urlPath"], limit=0)).query.endswith(
            "LIMIT 1"
        )

    def test_deterministic(self, onpage: DimensionRegistry, january: DateRange):
        """Same options in, byte-identical query out."""
        options = _options(
            january,
            ["campaign", "urlPath"],
            depth=1,
            parent_filters={"campaign": "123"},
            filters=[TableFilter(field="urlPath", operator="contains", value="x")],
        )
        builder = AggregateQueryBuilder(onpage)
        assert builder.build_query(options) == builder.build_query(options)


class TestAggregateQueryBuilderErrors:
    def test_depth_out_of_range(self, onpage: DimensionRegistry, january: DateRange):
        """Depth past the end of the path raises instead of clamping."""
        options = _options(january, ["campaign", "urlPath"], depth=2)
        with pytest.raises(DepthOutOfRangeError, match="Depth 2 exceeds dimensions length 2"):
            AggregateQueryBuilder(onpage).build_query(options)

    def test_empty_path(self, onpage: DimensionRegistry, january: DateRange):
        """An empty drill path has nothing to group by."""
        with pytest.raises(DepthOutOfRangeError):
            AggregateQueryBuilder(onpage).build_query(_options(january, []))

    def test_unknown_dimension(self, onpage: DimensionRegistry, january: DateRange):
        """Unknown dimension at the current depth raises."""
        with pytest.raises(UnknownDimensionError, match="Unknown dimension: nope"):
            AggregateQueryBuilder(onpage).build_query(_options(january, ["nope"]))

    def test_unknown_parent(self, onpage: DimensionRegistry, january: DateRange):
        """Unknown parent filter key raises."""
        options = _options(january, ["urlPath"], parent_filters={"nope": "x"})
        with pytest.raises(UnknownDimensionError, match="parent filter: nope"):
            AggregateQueryBuilder(onpage).build_query(options)

    def test_unknown_filter_field(self, onpage: DimensionRegistry, january: DateRange):
        """Unknown table filter field raises."""
        options = _options(
            january, ["urlPath"], filters=[TableFilter(field="nope", operator="equals", value="x")]
        )
        with pytest.raises(UnknownDimensionError, match="table filter: nope"):
            AggregateQueryBuilder(onpage).build_query(options)

    def test_bad_operator(self, onpage: DimensionRegistry, january: DateRange):
        """Unknown filter operator raises."""
        options = _options(
            january,
            ["urlPath"],
            filters=[TableFilter(field="urlPath", operator="regex", value="x")],
        )
        with pytest.raises(InvalidFilterError):
            AggregateQueryBuilder(onpage).build_query(options)

    def test_bad_sort_direction(self, onpage: DimensionRegistry, january: DateRange):
        """Sort direction is checked even when a date level ignores it."""
        with pytest.raises(UnsafeLiteralError):
            AggregateQueryBuilder(onpage).build_query(
                _options(january, ["date"], sort_direction="DESC; DROP TABLE x")
            )


class TestFormatSQL:
    def test_pretty_prints(self):
        """Valid sql is reformatted."""
        formatted = format_sql("select a from t where b = 1", Dialect.POSTGRES)
        assert "SELECT" in formatted
        assert "\n" in formatted

    def test_falls_back_to_raw(self):
        """Unparseable sql comes back untouched."""
        assert format_sql("SELECT FROM WHERE (", Dialect.MARIADB) == "SELECT FROM WHERE ("


class TestAggregateQueriesAgainstDuckDB:
    def test_top_level(
        self, onpage: DimensionRegistry, db_with_data: DuckDBExecutor, january: DateRange
    ):
        """Built on-page query runs and groups page views."""
        built = AggregateQueryBuilder(onpage).build_query(_options(january, ["urlPath"]))
        result = db_with_data.execute_built(built)

        views = {row["dimension_value"]: row["page_views"] for row in result.data}
        assert views == {"/offer": 2, "/pricing": 1, "/offer/checkout": 1, "/blog": 1}
        assert result.data[0]["dimension_value"] == "/offer"

    def test_enriched_names(
        self, onpage: DimensionRegistry, db_with_data: DuckDBExecutor, january: DateRange
    ):
        """Campaign ids are enriched with names from ad spend."""
        built = AggregateQueryBuilder(onpage).build_query(_options(january, ["campaign"]))
        rows = {row["dimension_id"]: row for row in db_with_data.execute_built(built).data}

        assert rows["1001"]["dimension_value"] == "Summer Sale"
        assert rows["1001"]["page_views"] == 3
        assert rows["2001"]["dimension_value"] == "Retargeting"
        assert rows[None]["page_views"] == 1

    def test_unknown_parent_matches_nulls(
        self, onpage: DimensionRegistry, db_with_data: DuckDBExecutor, january: DateRange
    ):
        """Drilling into "Unknown" finds the rows with no value."""
        options = _options(
            january, ["campaign", "urlPath"], depth=1, parent_filters={"campaign": "Unknown"}
        )
        result = db_with_data.execute_built(AggregateQueryBuilder(onpage).build_query(options))
        assert [row["dimension_value"] for row in result.data] == ["/blog"]

    def test_filters(
        self, onpage: DimensionRegistry, db_with_data: DuckDBExecutor, january: DateRange
    ):
        """Table filters narrow the rows, case-insensitively."""
        options = _options(
            january,
            ["urlPath"],
            filters=[
                TableFilter(field="urlPath", operator="contains", value="OFFER"),
                TableFilter(field="deviceType", operator="equals", value="Mobile"),
            ],
        )
        result = db_with_data.execute_built(AggregateQueryBuilder(onpage).build_query(options))
        assert {row["dimension_value"] for row in result.data} == {"/offer", "/offer/checkout"}

    def test_marketing_spend(
        self, marketing: DimensionRegistry, db_with_data: DuckDBExecutor, january: DateRange
    ):
        """Spend outside the range is excluded."""
        built = AggregateQueryBuilder(marketing).build_query(_options(january, ["network"]))
        cost = {
            row["dimension_value"]: float(row["cost"])
            for row in db_with_data.execute_built(built).data
        }
        assert cost == {"Google Ads": 150.0, "Facebook": 30.0}

    def test_marketing_crm_counts(
        self, marketing: DimensionRegistry, db_with_data: DuckDBExecutor, january: DateRange
    ):
        """CRM counts on the spend rows roll up with a real CPA per approved sale."""
        built = AggregateQueryBuilder(marketing).build_query(_options(january, ["network"]))
        rows = {row["dimension_value"]: row for row in db_with_data.execute_built(built).data}

        google, facebook = rows["Google Ads"], rows["Facebook"]
        assert (google["crm_subscriptions"], google["approved_sales"]) == (6, 3)
        assert float(google["real_cpa"]) == 50.0
        assert float(google["approval_rate"]) == 0.5
        assert (facebook["crm_subscriptions"], facebook["approved_sales"]) == (1, 0)
        assert facebook["real_cpa"] is None

    def test_cta_clicks(
        self, onpage: DimensionRegistry, db_with_data: DuckDBExecutor, january: DateRange
    ):
        """Only views with a clicked element named like cta count."""
        built = AggregateQueryBuilder(onpage).build_query(_options(january, ["urlPath"]))
        clicks = {
            row["dimension_value"]: row["cta_clicks"]
            for row in db_with_data.execute_built(built).data
        }
        assert clicks == {"/offer": 1, "/pricing": 0, "/offer/checkout": 0, "/blog": 0}
