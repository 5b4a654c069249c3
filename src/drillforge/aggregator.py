"""Campaign performance merged across the ads, crm and on-page stores.

three independent queries run concurrently. each source is allowed to fail
on its own: the failure is logged and that source just contributes nothing,
so a flaky analytics store never takes the whole table down. a source whose
rows don't parse counts as failed too.

merging is explicit per source (see models.performance) and derived metrics
are computed once, after every source has landed.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import date
from typing import Any, TypeVar

from drillforge.compiler.dialect import Placeholders, date_params, date_predicate
from drillforge.models.catalog import Dialect
from drillforge.models.performance import (
    AdLandingPage,
    AdPerformance,
    AdsetPerformance,
    AdsMetrics,
    CampaignHierarchy,
    CampaignPerformance,
    CampaignStatus,
    CrmMetrics,
    OnPageMetrics,
)
from drillforge.models.query import BuiltQuery, DateRange
from drillforge.settings import Settings, get_settings

logger = logging.getLogger(__name__)

# (sql, params) -> rows as dicts
QueryRunner = Callable[[str, list[Any]], Awaitable[list[dict[str, Any]]]]

T = TypeVar("T")

UPSELL_TAG = "parent-sub-id="

PAGE_VIEWS = "remote_session_tracker.event_page_view_enriched_v2"

# engagement columns shared by the campaign and landing page queries
ENGAGEMENT_COLUMNS = [
    "COUNT(*) AS page_views",
    "COUNT(DISTINCT ff_visitor_id) AS unique_visitors",
    "COUNT(*) FILTER (WHERE form_view = true) AS form_views",
    "COUNT(*) FILTER (WHERE form_started = true) AS form_starters",
    "ROUND(COUNT(*) FILTER (WHERE active_time_s IS NOT NULL AND active_time_s < 5)::numeric"
    " / NULLIF(COUNT(*) FILTER (WHERE active_time_s IS NOT NULL), 0), 4) AS bounce_rate",
    "COUNT(*) FILTER (WHERE hero_scroll_passed = true) AS scroll_past_hero",
    "ROUND(AVG(active_time_s)::numeric, 2) AS avg_time_on_page",
]

SPEND_COLUMNS = [
    "ROUND(SUM(cost::numeric), 2) AS spend",
    "SUM(clicks::integer) AS clicks",
    "SUM(impressions::integer) AS impressions",
    "ROUND(SUM(conversions::numeric), 0) AS conversions",
]


def _in_list(placeholders: Placeholders, count: int) -> str:
    return ", ".join(placeholders.next() for _ in range(count))


def build_ads_query(campaign_ids: Sequence[str], date_range: DateRange) -> BuiltQuery:
    """Spend per campaign in the range, plus the last day it spent anything.

    last_active_date looks at all history, not just the range, so a campaign
    that stopped before the range still gets a status.
    """
    ph = Placeholders(Dialect.POSTGRES)
    in_range = date_predicate(Dialect.POSTGRES, "date", ph.next(), ph.next())
    ids = _in_list(ph, len(campaign_ids))
    sql = "\n".join(
        [
            "SELECT",
            "  campaign_id::text AS campaign_id,",
            "  MAX(campaign_name) AS campaign_name,",
            f"  COALESCE(SUM(cost) FILTER (WHERE {in_range}), 0) AS spend,",
            f"  COALESCE(SUM(clicks) FILTER (WHERE {in_range}), 0) AS clicks,",
            f"  COALESCE(SUM(impressions) FILTER (WHERE {in_range}), 0) AS impressions,",
            f"  COALESCE(SUM(conversions) FILTER (WHERE {in_range}), 0) AS conversions,",
            "  MAX(date) FILTER (WHERE cost > 0) AS last_active_date",
            "FROM merged_ads_spending",
            f"WHERE campaign_id::text IN ({ids})",
            "GROUP BY campaign_id",
        ]
    )
    params = [*date_params(Dialect.POSTGRES, date_range.start, date_range.end), *campaign_ids]
    return BuiltQuery(query=sql, params=params)


def build_crm_query(campaign_ids: Sequence[str], date_range: DateRange) -> BuiltQuery:
    """One row per sale attributed to one of the campaigns.

    three kinds of sale, each dated the way the crm dates it:
      subscription  non-upsell subscriptions, by s.date_create
      ots           one-time-sale invoices (type 3), by i.order_date
      upsell        invoices tagged with a parent subscription, by the
                    parent's date_create and attributed to its campaign
    rows come back unaggregated and get bucketed in python, so one round
    trip serves every crm count.
    """
    ph = Placeholders(Dialect.MARIADB)
    params: list[Any] = []

    def scope(date_column: str, campaign_column: str) -> str:
        params.extend(date_params(Dialect.MARIADB, date_range.start, date_range.end))
        params.extend(campaign_ids)
        in_range = date_predicate(Dialect.MARIADB, date_column, ph.next(), ph.next())
        return f"{in_range}\n  AND {campaign_column} IN ({_in_list(ph, len(campaign_ids))})"

    subscriptions = "\n".join(
        [
            "SELECT",
            "  'subscription' AS sale_type,",
            "  s.tracking_id_4 AS campaign_id,",
            "  s.id AS sale_id,",
            "  COALESCE(i.total, 0) AS total,",
            "  (i.id IS NOT NULL) AS has_trial,",
            "  COALESCE(i.is_marked = 1, 0) AS is_approved",
            "FROM subscription s",
            "LEFT JOIN invoice i ON i.id = (",
            "  SELECT MIN(i2.id) FROM invoice i2",
            "  WHERE i2.subscription_id = s.id AND i2.type = 1 AND i2.deleted = 0",
            ")",
            f"WHERE (s.tag IS NULL OR s.tag NOT LIKE '%{UPSELL_TAG}%')",
            f"  AND {scope('s.date_create', 's.tracking_id_4')}",
        ]
    )
    ots = "\n".join(
        [
            "SELECT",
            "  'ots' AS sale_type,",
            "  i.tracking_id_4 AS campaign_id,",
            "  i.id AS sale_id,",
            "  COALESCE(i.total, 0) AS total,",
            "  0 AS has_trial,",
            "  COALESCE(i.is_marked = 1, 0) AS is_approved",
            "FROM invoice i",
            "WHERE i.type = 3 AND i.deleted = 0",
            f"  AND {scope('i.order_date', 'i.tracking_id_4')}",
        ]
    )
    upsells = "\n".join(
        [
            "SELECT",
            "  'upsell' AS sale_type,",
            "  ps.tracking_id_4 AS campaign_id,",
            "  i.id AS sale_id,",
            "  COALESCE(i.total, 0) AS total,",
            "  0 AS has_trial,",
            "  COALESCE(i.is_marked = 1, 0) AS is_approved",
            "FROM invoice i",
            "INNER JOIN subscription ps ON ps.customer_id = i.customer_id",
            f"  AND i.tag LIKE CONCAT('%{UPSELL_TAG}', ps.id, '%')",
            "WHERE i.deleted = 0",
            f"  AND {scope('ps.date_create', 'ps.tracking_id_4')}",
        ]
    )
    sql = "\nUNION ALL\n".join([subscriptions, ots, upsells])
    return BuiltQuery(query=sql, params=params)


def build_onpage_query(campaign_ids: Sequence[str], date_range: DateRange) -> BuiltQuery:
    ph = Placeholders(Dialect.POSTGRES)
    in_range = date_predicate(Dialect.POSTGRES, "created_at", ph.next(), ph.next())
    ids = _in_list(ph, len(campaign_ids))
    sql = "\n".join(
        [
            "SELECT",
            "  " + ",\n  ".join(["utm_campaign::text AS campaign_id", *ENGAGEMENT_COLUMNS]),
            f"FROM {PAGE_VIEWS}",
            f"WHERE {in_range}",
            f"  AND utm_campaign::text IN ({ids})",
            "GROUP BY utm_campaign",
        ]
    )
    params = [*date_params(Dialect.POSTGRES, date_range.start, date_range.end), *campaign_ids]
    return BuiltQuery(query=sql, params=params)


def build_adset_query(campaign_id: str, date_range: DateRange) -> BuiltQuery:
    """Spend per adset of one campaign, biggest spender first."""
    ph = Placeholders(Dialect.POSTGRES)
    in_range = date_predicate(Dialect.POSTGRES, "date", ph.next(), ph.next())
    sql = "\n".join(
        [
            "SELECT",
            "  " + ",\n  ".join(["adset_id", "MAX(adset_name) AS adset_name", *SPEND_COLUMNS]),
            "FROM merged_ads_spending",
            f"WHERE {in_range}",
            f"  AND campaign_id::text = {ph.next()}",
            "  AND adset_id IS NOT NULL AND adset_id != ''",
            "GROUP BY adset_id",
            "ORDER BY SUM(cost::numeric) DESC",
        ]
    )
    params = [*date_params(Dialect.POSTGRES, date_range.start, date_range.end), campaign_id]
    return BuiltQuery(query=sql, params=params)


def build_ad_query(campaign_id: str, date_range: DateRange) -> BuiltQuery:
    """Spend per ad of one campaign, keeping the adset each ad ran in."""
    ph = Placeholders(Dialect.POSTGRES)
    in_range = date_predicate(Dialect.POSTGRES, "date", ph.next(), ph.next())
    columns = ["ad_id", "MAX(ad_name) AS ad_name", "adset_id", *SPEND_COLUMNS]
    sql = "\n".join(
        [
            "SELECT",
            "  " + ",\n  ".join(columns),
            "FROM merged_ads_spending",
            f"WHERE {in_range}",
            f"  AND campaign_id::text = {ph.next()}",
            "  AND ad_id IS NOT NULL AND ad_id != ''",
            "GROUP BY ad_id, adset_id",
            "ORDER BY SUM(cost::numeric) DESC",
        ]
    )
    params = [*date_params(Dialect.POSTGRES, date_range.start, date_range.end), campaign_id]
    return BuiltQuery(query=sql, params=params)


def build_landing_page_query(campaign_id: str, date_range: DateRange) -> BuiltQuery:
    """Engagement per ad and url for one campaign's traffic."""
    ph = Placeholders(Dialect.POSTGRES)
    in_range = date_predicate(Dialect.POSTGRES, "created_at", ph.next(), ph.next())
    columns = ["ad_id::text AS ad_id", "url_path", *ENGAGEMENT_COLUMNS]
    sql = "\n".join(
        [
            "SELECT",
            "  " + ",\n  ".join(columns),
            f"FROM {PAGE_VIEWS}",
            f"WHERE {in_range}",
            f"  AND utm_campaign::text = {ph.next()}",
            "  AND ad_id IS NOT NULL AND ad_id::text != ''",
            "GROUP BY ad_id, url_path",
            "ORDER BY ad_id, COUNT(*) DESC",
        ]
    )
    params = [*date_params(Dialect.POSTGRES, date_range.start, date_range.end), campaign_id]
    return BuiltQuery(query=sql, params=params)


def bucket_crm_rows(rows: list[dict[str, Any]]) -> dict[str, CrmMetrics]:
    """Count sale rows per campaign.

    every sale adds to revenue. subscriptions count trials and approvals,
    one-time sales and upsells count themselves and their approvals.
    """
    buckets: dict[str, CrmMetrics] = {}
    for row in rows:
        campaign_id = row.get("campaign_id")
        if campaign_id is None:
            continue
        campaign_id = str(campaign_id)
        metrics = buckets.setdefault(campaign_id, CrmMetrics(campaign_id=campaign_id))
        approved = bool(row.get("is_approved"))
        metrics.revenue += float(row.get("total") or 0)

        sale_type = row.get("sale_type")
        if sale_type == "subscription":
            metrics.subscriptions += 1
            metrics.trials += bool(row.get("has_trial"))
            metrics.trials_approved += approved
        elif sale_type == "ots":
            metrics.ots += 1
            metrics.ots_approved += approved
        elif sale_type == "upsell":
            metrics.upsells += 1
            metrics.upsells_approved += approved
    for metrics in buckets.values():
        metrics.revenue = round(metrics.revenue, 2)
    return buckets


def by_campaign(model: type[T]) -> Callable[[list[dict[str, Any]]], dict[str, T]]:
    """Parser keying one model per row on campaign_id."""

    def parse(rows: list[dict[str, Any]]) -> dict[str, T]:
        return {str(r["campaign_id"]): model(**r) for r in rows}

    return parse


def ctr_and_cpc(spend: float, clicks: int, impressions: int) -> tuple[float | None, float | None]:
    """ctr as a percentage and cost per click, None without a denominator."""
    ctr = round(clicks / impressions * 100, 2) if impressions else None
    cpc = round(spend / clicks, 2) if clicks else None
    return ctr, cpc


def parse_adsets(rows: list[dict[str, Any]]) -> list[AdsetPerformance]:
    adsets = []
    for row in rows:
        adset = AdsetPerformance(**{**row, "adset_name": row.get("adset_name") or row["adset_id"]})
        adset.ctr, adset.cpc = ctr_and_cpc(adset.spend, adset.clicks, adset.impressions)
        adsets.append(adset)
    return adsets


def parse_ads(rows: list[dict[str, Any]]) -> list[AdPerformance]:
    ads = []
    for row in rows:
        ad = AdPerformance(**{**row, "ad_name": row.get("ad_name") or row["ad_id"]})
        ad.ctr, ad.cpc = ctr_and_cpc(ad.spend, ad.clicks, ad.impressions)
        ads.append(ad)
    return ads


def parse_landing_pages(rows: list[dict[str, Any]]) -> dict[str, list[AdLandingPage]]:
    """Landing pages grouped by ad id, busiest page first within each ad."""
    pages: dict[str, list[AdLandingPage]] = {}
    for row in rows:
        page = AdLandingPage(**row)
        pages.setdefault(str(row["ad_id"]), []).append(page)
    return pages


def campaign_status(
    last_active: date | None,
    today: date,
    active_days: int = 3,
    paused_days: int = 30,
) -> CampaignStatus | None:
    if last_active is None:
        return None
    days = (today - last_active).days
    if days <= active_days:
        return CampaignStatus.ACTIVE
    if days <= paused_days:
        return CampaignStatus.PAUSED
    return CampaignStatus.STOPPED


def merge_performance(
    campaign_ids: Sequence[str],
    ads: dict[str, AdsMetrics],
    crm: dict[str, CrmMetrics],
    onpage: dict[str, OnPageMetrics],
) -> list[CampaignPerformance]:
    """One record per requested id, in request order, each source in its own fields."""
    merged = []
    for campaign_id in dict.fromkeys(campaign_ids):
        record: dict[str, Any] = {"campaign_id": campaign_id}
        for source in (ads.get(campaign_id), crm.get(campaign_id), onpage.get(campaign_id)):
            if source is not None:
                record.update(source.model_dump(exclude={"campaign_id"}))
        merged.append(CampaignPerformance(**record))
    return merged


def apply_derived_metrics(
    record: CampaignPerformance,
    today: date,
    active_days: int = 3,
    paused_days: int = 30,
) -> CampaignPerformance:
    record.status = campaign_status(record.last_active_date, today, active_days, paused_days)
    record.ctr, record.cpc = ctr_and_cpc(record.spend, record.clicks, record.impressions)
    record.approval_rate = (
        round(record.trials_approved / record.subscriptions * 100, 2)
        if record.subscriptions
        else None
    )
    record.true_cpa = (
        round(record.spend / record.trials_approved, 2) if record.trials_approved else None
    )
    return record


class CampaignPerformanceAggregator:
    """Fans out to the three stores and merges per campaign id."""

    def __init__(
        self,
        ads_runner: QueryRunner,
        crm_runner: QueryRunner,
        onpage_runner: QueryRunner,
        settings: Settings | None = None,
    ) -> None:
        self.ads_runner = ads_runner
        self.crm_runner = crm_runner
        self.onpage_runner = onpage_runner
        self.settings = settings or get_settings()

    async def get_campaign_performance(
        self,
        campaign_ids: Sequence[str],
        date_range: DateRange,
        today: date | None = None,
    ) -> list[CampaignPerformance]:
        ids = [str(i) for i in dict.fromkeys(campaign_ids)]
        if not ids:
            return []

        ads, crm, onpage = await asyncio.gather(
            self._fetch(
                "ads", self.ads_runner, build_ads_query(ids, date_range), by_campaign(AdsMetrics)
            ),
            self._fetch("crm", self.crm_runner, build_crm_query(ids, date_range), bucket_crm_rows),
            self._fetch(
                "onpage",
                self.onpage_runner,
                build_onpage_query(ids, date_range),
                by_campaign(OnPageMetrics),
            ),
        )

        today = today or date.today()
        merged = merge_performance(ids, ads, crm, onpage)
        for record in merged:
            apply_derived_metrics(
                record,
                today,
                self.settings.active_window_days,
                self.settings.paused_window_days,
            )
        logger.info("merged performance for %d campaigns", len(merged))
        return merged

    async def get_campaign_hierarchy(
        self, campaign_id: str, date_range: DateRange
    ) -> CampaignHierarchy:
        """Adsets, ads and per-ad landing pages for one campaign."""
        campaign_id = str(campaign_id)
        adsets, ads, pages = await asyncio.gather(
            self._fetch(
                "adsets", self.ads_runner, build_adset_query(campaign_id, date_range), parse_adsets
            ),
            self._fetch("ads", self.ads_runner, build_ad_query(campaign_id, date_range), parse_ads),
            self._fetch(
                "landing pages",
                self.onpage_runner,
                build_landing_page_query(campaign_id, date_range),
                parse_landing_pages,
            ),
        )
        logger.debug(
            "campaign %s: %d adsets, %d ads, landing pages for %d ads",
            campaign_id,
            len(adsets),
            len(ads),
            len(pages),
        )
        return CampaignHierarchy(
            campaign_id=campaign_id, adsets=adsets, ads=ads, ad_landing_pages=pages
        )

    async def _fetch(
        self,
        source: str,
        runner: QueryRunner,
        built: BuiltQuery,
        parse: Callable[[list[dict[str, Any]]], T],
    ) -> T:
        """Run one source and parse its rows. Any failure degrades to parse([])."""
        try:
            rows = await runner(built.query, built.params)
            return parse(rows)
        except Exception:
            logger.warning("%s source failed, continuing without it", source, exc_info=True)
            return parse([])
