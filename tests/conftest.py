"""Pytest fixtures for drillforge tests."""

from collections.abc import Generator
from datetime import date
from pathlib import Path

import pytest

from drillforge.executor.duckdb_executor import DuckDBExecutor
from drillforge.models.query import DateRange
from drillforge.parser.loader import DimensionRegistry, ReportRegistry
from drillforge.settings import Settings
from drillforge.store import ReportStore


@pytest.fixture
def sample_catalog_yaml() -> str:
    """A small extra report layered on top of the built-in catalogs."""
    return """
reports:
  - name: orders
    description: "Test order report"
    dialect: postgres
    table: orders
    alias: o
    date_column: "{base}order_date"
    default_sort: revenue

    metrics:
      - id: revenue
        alias: revenue
        expr: "SUM({base}amount)"
      - id: orderCount
        alias: order_count
        expr: "COUNT(*)"

    dimensions:
      - id: country
        label: "Country"
        value_expr: "{base}country"
      - id: status
        value_expr: "{base}status"
      - id: orderDate
        value_expr: "{base}order_date"
        is_date: true
"""


@pytest.fixture
def catalog_dir(tmp_path: Path, sample_catalog_yaml: str) -> Path:
    """Create a temporary catalog directory with sample YAML."""
    path = tmp_path / "catalogs"
    path.mkdir()
    (path / "orders.yaml").write_text(sample_catalog_yaml)
    return path


@pytest.fixture
def reports() -> ReportRegistry:
    return ReportRegistry.builtin()


@pytest.fixture
def onpage(reports: ReportRegistry) -> DimensionRegistry:
    return reports.dimensions("onpage")


@pytest.fixture
def marketing(reports: ReportRegistry) -> DimensionRegistry:
    return reports.dimensions("marketing")


@pytest.fixture
def crm(reports: ReportRegistry) -> DimensionRegistry:
    return reports.dimensions("crm")


@pytest.fixture
def january() -> DateRange:
    return DateRange(start=date(2026, 1, 1), end=date(2026, 1, 31))


@pytest.fixture
def settings() -> Settings:
    """Defaults only, ignoring any env vars or .env on the test machine."""
    return Settings(_env_file=None)


AD_SPEND_COLUMNS = [
    "date DATE",
    "network VARCHAR",
    "campaign_id VARCHAR",
    "campaign_name VARCHAR",
    "adset_id VARCHAR",
    "adset_name VARCHAR",
    "ad_id VARCHAR",
    "ad_name VARCHAR",
    "cost DOUBLE",
    "clicks INTEGER",
    "impressions INTEGER",
    "conversions DOUBLE",
    "crm_subscriptions INTEGER",
    "approved_sales INTEGER",
]

PAGE_VIEW_COLUMNS = [
    "created_at TIMESTAMP",
    "url_path VARCHAR",
    "page_type VARCHAR",
    "utm_source VARCHAR",
    "utm_campaign VARCHAR",
    "utm_content VARCHAR",
    "utm_medium VARCHAR",
    "ad_id VARCHAR",
    "device_type VARCHAR",
    "os_name VARCHAR",
    "browser_name VARCHAR",
    "country_code VARCHAR",
    "ff_visitor_id VARCHAR",
    "active_time_s DOUBLE",
    "hero_scroll_passed BOOLEAN",
    "form_view BOOLEAN",
    "form_started BOOLEAN",
    "page_elements VARCHAR",
]


@pytest.fixture
def sample_ad_spend() -> list[tuple]:
    """Two networks, three campaigns. 1003 last spent in december."""
    google = ("Google Ads", "1001", "Summer Sale", "10011", "Set A", "100111", "Ad A")
    facebook = ("Facebook", "2001", "Retargeting", "20011", "Set B", "200111", "Ad B")
    old = ("Google Ads", "1003", "Old Promo", "10031", "Set C", "100311", "Ad C")
    return [
        (date(2026, 1, 5), *google, 100.0, 50, 1000, 5.0, 4, 2),
        (date(2026, 1, 6), *google, 50.0, 25, 1000, 2.0, 2, 1),
        (date(2026, 1, 6), *facebook, 30.0, 10, 500, 1.0, 1, 0),
        (date(2026, 1, 20), *facebook, 0.0, 0, 200, 0.0, 0, 0),
        (date(2025, 12, 1), *old, 80.0, 40, 800, 4.0, 3, 3),
    ]


@pytest.fixture
def sample_page_views() -> list[tuple]:
    """Five views across two campaigns, one with no campaign at all.

    one view clicked a cta, one clicked something that isn't a cta.
    """
    def view(ts, url, campaign, content, device, visitor, form_view, started, elements=None):
        return (
            ts, url, "landing", "google", campaign, content, "cpc", None, device,
            "iOS", "Safari", "us", visitor, 12.5, True, form_view, started, elements,
        )  # fmt: skip

    clicked_cta = '{"hero_cta": {"clicked": true, "visible": true}}'
    clicked_form = '{"cta": {"clicked": false}, "form": {"clicked": true}}'

    return [
        view(
            "2026-01-05 10:00:00", "/offer", "1001", "10011", "mobile", "v1", True, True,
            clicked_cta,
        ),
        view(
            "2026-01-05 11:00:00", "/offer", "1001", "10011", "desktop", "v2", True, False,
            clicked_form,
        ),
        view("2026-01-06 09:30:00", "/pricing", "1001", "10011", "mobile", "v1", False, False),
        view("2026-01-07 12:00:00", "/offer/checkout", "2001", "20011", "mobile", "v3", True, True),
        view("2026-01-08 08:00:00", "/blog", None, None, "tablet", "v4", False, False),
    ]


def _load_sample_tables(
    executor: DuckDBExecutor, ad_spend: list[tuple], page_views: list[tuple]
) -> None:
    executor.create_table_from_data("merged_ads_spending", AD_SPEND_COLUMNS, ad_spend)
    executor.conn.execute("CREATE SCHEMA IF NOT EXISTS remote_session_tracker")
    executor.create_table_from_data(
        "remote_session_tracker.event_page_view_enriched_v2", PAGE_VIEW_COLUMNS, page_views
    )


@pytest.fixture
def db_with_data(
    sample_ad_spend: list[tuple], sample_page_views: list[tuple]
) -> Generator[DuckDBExecutor, None, None]:
    """Create a DuckDB executor with the ad spend and page view tables."""
    executor = DuckDBExecutor()
    _load_sample_tables(executor, sample_ad_spend, sample_page_views)
    yield executor
    executor.close()


@pytest.fixture
def store_with_data(
    settings: Settings, sample_ad_spend: list[tuple], sample_page_views: list[tuple]
) -> Generator[ReportStore, None, None]:
    """Create a ReportStore whose DuckDB has the sample tables loaded."""
    store = ReportStore(settings=settings)
    _load_sample_tables(store.executor, sample_ad_spend, sample_page_views)
    yield store
    store.close()


@pytest.fixture
def sample_db_file(
    tmp_path: Path, sample_ad_spend: list[tuple], sample_page_views: list[tuple]
) -> Path:
    """A DuckDB file with the sample tables, for commands that open their own connection."""
    path = tmp_path / "sample.duckdb"
    with DuckDBExecutor(str(path)) as executor:
        _load_sample_tables(executor, sample_ad_spend, sample_page_views)
    return path


CRM_TABLES = {
    "customer": [
        "id INTEGER",
        "first_name VARCHAR",
        "last_name VARCHAR",
        "email VARCHAR",
        "country VARCHAR",
        "date_registered TIMESTAMP",
    ],
    "source": ["id INTEGER", "source VARCHAR"],
    "product": ["id INTEGER", "product_name VARCHAR"],
    "subscription": [
        "id INTEGER",
        "customer_id INTEGER",
        "source_id INTEGER",
        "tracking_id VARCHAR",
        "tracking_id_2 VARCHAR",
        "tracking_id_3 VARCHAR",
        "tracking_id_4 VARCHAR",
        "tracking_id_5 VARCHAR",
        "trial_price DOUBLE",
        "date_create TIMESTAMP",
        "status VARCHAR",
        "canceled_reason_about VARCHAR",
        "deleted INTEGER",
    ],
    "invoice": [
        "id INTEGER",
        "subscription_id INTEGER",
        "customer_id INTEGER",
        "type INTEGER",
        "total DOUBLE",
        "is_marked INTEGER",
        "deleted INTEGER",
        "tag VARCHAR",
    ],
    "invoice_product": ["invoice_id INTEGER", "product_id INTEGER"],
    "cancel_reason": ["id INTEGER", "caption VARCHAR"],
    "subscription_cancel_reason": ["subscription_id INTEGER", "cancel_reason_id INTEGER"],
}


@pytest.fixture
def crm_db() -> Generator[DuckDBExecutor, None, None]:
    """One canceled subscription with two products and two cancel reasons."""
    rows = {
        "customer": [(1, "Ana", "Diaz", "ana@example.com", "US", "2026-01-10 09:00:00")],
        "source": [(1, "google")],
        "product": [(1, "Gold"), (2, "Silver")],
        "subscription": [
            (
                10, 1, 1, "d1", "a1", None, "c1", None, 29.0,
                "2026-01-10 10:00:00", "canceled", "too pricey", 0,
            ),
        ],  # fmt: skip
        "invoice": [(100, 10, 1, 1, 29.0, 1, 0, None)],
        "invoice_product": [(100, 1), (100, 2)],
        "cancel_reason": [(1, "Too expensive"), (2, "Not needed")],
        "subscription_cancel_reason": [(10, 1), (10, 2)],
    }
    executor = DuckDBExecutor()
    for table, columns in CRM_TABLES.items():
        executor.create_table_from_data(table, columns, rows[table])
    yield executor
    executor.close()
