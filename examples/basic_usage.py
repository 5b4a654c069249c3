"""Basic usage example for drillforge."""

import asyncio
import sys
from datetime import date
from pathlib import Path

# Add parent to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent.parent / "data"))

from drillforge.models.query import DateRange, DetailQueryOptions, QueryOptions, TableFilter
from drillforge.store import ReportStore
from generate_sample_data import generate_sample_data


def main():
    """Demonstrate drillforge capabilities."""
    db_path = Path(__file__).parent.parent / "data" / "sample.duckdb"
    generate_sample_data(db_path).close()
    store = ReportStore(database_path=str(db_path))
    january = DateRange(start=date(2026, 1, 1), end=date(2026, 1, 31))

    print("=" * 60)
    print("drillforge drill-down demo")
    print("=" * 60)

    # 1. top level: spend by network
    print("\n1. Spend by network:")
    result = store.query("marketing", QueryOptions(date_range=january, dimensions=["network"]))
    for row in result.data:
        print(f"   {row['dimension_value']}: ${row['cost']:,.2f} ({row['clicks']} clicks)")

    # 2. drill into one network
    print("\n2. Facebook campaigns:")
    options = QueryOptions(
        date_range=january,
        dimensions=["network", "campaign"],
        depth=1,
        parent_filters={"network": "Facebook"},
    )
    for row in store.query("marketing", options).data:
        print(f"   {row['dimension_value']}: ${row['cost']:,.2f}")

    # 3. on-page campaigns, names enriched from ad spend
    print("\n3. Page views by campaign, mobile only:")
    options = QueryOptions(
        date_range=january,
        dimensions=["campaign"],
        filters=[TableFilter(field="deviceType", operator="equals", value="mobile")],
    )
    for row in store.query("onpage", options).data:
        print(f"   {row['dimension_id']} {row['dimension_value']}: {row['page_views']} views")

    # 4. the sql behind a drill level
    print("\n4. Generated SQL for onpage urlPath contains 'offer':")
    built = store.get_sql(
        "onpage",
        QueryOptions(
            date_range=january,
            dimensions=["urlPath"],
            filters=[TableFilter(field="urlPath", operator="contains", value="offer")],
        ),
    )
    print(built.query)
    print(f"   params: {built.params}")

    # 5. crm detail query (not executed, mariadb only)
    print("\n5. Detail query for approved trials in the US:")
    detail = store.detail_sql(
        "trialsApproved",
        DetailQueryOptions(date_range=january, parent_filters={"country": "US"}),
    )
    print(detail.count_query)
    print(f"   count params: {detail.count_params}")

    # 6. period buckets
    print("\n6. Biweekly periods for Q1:")
    for period in store.periods(date(2026, 1, 1), date(2026, 3, 31), "biweekly"):
        print(f"   {period.key}: {period.label}")

    # 7. merged campaign performance (crm falls back to empty here)
    print("\n7. Campaign performance:")
    records = asyncio.run(
        store.campaign_performance(["1001", "2001"], january, today=date(2026, 2, 1))
    )
    for record in records:
        print(
            f"   {record.campaign_name}: ${record.spend:,.2f}, "
            f"{record.page_views} views, status {record.status}"
        )

    print("\n" + "=" * 60)
    print("Demo complete!")
    print("=" * 60)

    store.close()


if __name__ == "__main__":
    main()
