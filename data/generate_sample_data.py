"""Generate sample ad-spend and page-view data for drillforge.

writes a duckdb file with the two postgres-side tables the marketing and
onpage reports read, so `drillforge query --db data/sample.duckdb ...`
has something to drill into. the crm tables are mariadb-only and not
generated here.
"""

import json
import random
from datetime import date, timedelta
from pathlib import Path

import duckdb

CAMPAIGNS = [
    ("1001", "Summer Sale", "Google Ads"),
    ("1002", "Brand Search", "Google Ads"),
    ("2001", "Lookalike Prospecting", "Facebook"),
    ("2002", "Retargeting", "Facebook"),
]
URL_PATHS = ["/", "/offer", "/offer/checkout", "/blog/guide", "/pricing"]
DEVICES = ["desktop", "desktop", "mobile", "mobile", "tablet"]
COUNTRIES = ["us", "us", "gb", "de", "fr"]


def generate_sample_data(db_path: str | Path = ":memory:") -> duckdb.DuckDBPyConnection:
    """Create and fill the sample tables.

    Args:
        db_path: DuckDB file to write, or ":memory:".

    Returns:
        DuckDB connection with loaded data.
    """
    random.seed(42)  # Reproducible data
    conn = duckdb.connect(str(db_path))

    conn.execute("""
        CREATE OR REPLACE TABLE merged_ads_spending (
            date DATE,
            network VARCHAR,
            campaign_id VARCHAR,
            campaign_name VARCHAR,
            adset_id VARCHAR,
            adset_name VARCHAR,
            ad_id VARCHAR,
            ad_name VARCHAR,
            cost DOUBLE,
            clicks INTEGER,
            impressions INTEGER,
            conversions DOUBLE,
            crm_subscriptions INTEGER,
            approved_sales INTEGER
        )
    """)
    conn.executemany(
        "INSERT INTO merged_ads_spending VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        generate_ad_spend(date(2026, 1, 1), 90),
    )

    conn.execute("CREATE SCHEMA IF NOT EXISTS remote_session_tracker")
    conn.execute("""
        CREATE OR REPLACE TABLE remote_session_tracker.event_page_view_enriched_v2 (
            created_at TIMESTAMP,
            url_path VARCHAR,
            page_type VARCHAR,
            utm_source VARCHAR,
            utm_campaign VARCHAR,
            utm_content VARCHAR,
            utm_medium VARCHAR,
            ad_id VARCHAR,
            device_type VARCHAR,
            os_name VARCHAR,
            browser_name VARCHAR,
            country_code VARCHAR,
            ff_visitor_id VARCHAR,
            active_time_s DOUBLE,
            hero_scroll_passed BOOLEAN,
            form_view BOOLEAN,
            form_started BOOLEAN,
            page_elements VARCHAR
        )
    """)
    conn.executemany(
        "INSERT INTO remote_session_tracker.event_page_view_enriched_v2 VALUES "
        "(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        generate_page_views(date(2026, 1, 1), 90, 5000),
    )

    return conn


def generate_ad_spend(start: date, days: int) -> list[tuple]:
    """One row per campaign/adset/ad/day."""
    rows = []
    for offset in range(days):
        day = start + timedelta(days=offset)
        for campaign_id, campaign_name, network in CAMPAIGNS:
            for n in (1, 2):
                adset_id = f"{campaign_id}{n}"
                ad_id = f"{adset_id}1"
                impressions = random.randint(200, 5000)
                clicks = random.randint(0, impressions // 20)
                subscriptions = random.randint(0, max(clicks // 15, 1))
                rows.append(
                    (
                        day,
                        network,
                        campaign_id,
                        campaign_name,
                        adset_id,
                        f"{campaign_name} / set {n}",
                        ad_id,
                        f"{campaign_name} / ad {n}",
                        round(clicks * random.uniform(0.2, 1.5), 2),
                        clicks,
                        impressions,
                        float(random.randint(0, max(clicks // 10, 1))),
                        subscriptions,
                        random.randint(0, subscriptions),
                    )
                )
    return rows


def generate_page_views(start: date, days: int, count: int) -> list[tuple]:
    rows = []
    for _ in range(count):
        day = start + timedelta(days=random.randint(0, days - 1))
        campaign_id, _, network = random.choice(CAMPAIGNS)
        n = random.choice((1, 2))
        form_view = random.random() < 0.4
        rows.append(
            (
                f"{day.isoformat()} {random.randint(0, 23):02d}:{random.randint(0, 59):02d}:00",
                random.choice(URL_PATHS),
                random.choice(["landing", "article", "checkout"]),
                network.split()[0].lower(),
                campaign_id,
                f"{campaign_id}{n}",
                "cpc",
                f"{campaign_id}{n}1",
                random.choice(DEVICES),
                random.choice(["iOS", "Android", "Windows", "macOS"]),
                random.choice(["Chrome", "Safari", "Firefox"]),
                random.choice(COUNTRIES),
                f"v{random.randint(1, 1500)}",
                round(random.uniform(0, 120), 1),
                random.random() < 0.6,
                form_view,
                form_view and random.random() < 0.5,
                page_elements(),
            )
        )
    return rows


def page_elements() -> str | None:
    """Tracked elements on the page as json text, None when nothing was tracked."""
    if random.random() < 0.3:
        return None
    elements = {
        "hero_cta": {"visible": True, "clicked": random.random() < 0.2},
        "faq": {"visible": random.random() < 0.5, "clicked": random.random() < 0.1},
    }
    return json.dumps(elements)


if __name__ == "__main__":
    import sys

    db_path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(__file__).parent / "sample.duckdb"
    conn = generate_sample_data(db_path)

    result = conn.execute("SELECT COUNT(*) FROM merged_ads_spending").fetchone()
    print(f"Generated {result[0]} ad spend rows")

    result = conn.execute(
        "SELECT COUNT(*) FROM remote_session_tracker.event_page_view_enriched_v2"
    ).fetchone()
    print(f"Generated {result[0]} page views")
    print(f"Database written to {db_path}")

    conn.close()
