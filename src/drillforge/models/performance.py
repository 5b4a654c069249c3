"""Per-source partial records and the merged campaign performance record.

each source owns its own fields. the merge never lets one source overwrite
another's numbers, and derived metrics are computed once afterwards.
"""

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field


class CampaignStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"


class AdsMetrics(BaseModel):
    """Owned by the ad-spend store."""

    campaign_id: str
    campaign_name: str | None = None
    spend: float = 0.0
    clicks: int = 0
    impressions: int = 0
    conversions: float = 0.0
    last_active_date: date | None = None  # latest day with spend > 0, all history


class CrmMetrics(BaseModel):
    """Owned by the crm store, bucketed by tracking_id_4 (campaign id)."""

    campaign_id: str
    subscriptions: int = 0
    trials: int = 0  # subscriptions that have a live trial invoice
    trials_approved: int = 0
    ots: int = 0
    ots_approved: int = 0
    upsells: int = 0
    upsells_approved: int = 0
    revenue: float = 0.0

class OnPageMetrics(BaseModel):
    """Owned by the on-page analytics store."""

    campaign_id: str
    page_views: int = 0
    unique_visitors: int = 0
    form_views: int = 0
    form_starters: int = 0
    bounce_rate: float | None = None
    scroll_past_hero: int = 0
    avg_time_on_page: float | None = None


class CampaignPerformance(BaseModel):
    """The merged record, one per requested campaign id."""

    campaign_id: str
    campaign_name: str | None = None
    status: CampaignStatus | None = None
    last_active_date: date | None = None

    spend: float = 0.0
    clicks: int = 0
    impressions: int = 0
    conversions: float = 0.0

    subscriptions: int = 0
    trials: int = 0
    trials_approved: int = 0
    ots: int = 0
    ots_approved: int = 0
    upsells: int = 0
    upsells_approved: int = 0
    revenue: float = 0.0

    page_views: int = 0
    unique_visitors: int = 0
    form_views: int = 0
    form_starters: int = 0
    bounce_rate: float | None = None
    scroll_past_hero: int = 0
    avg_time_on_page: float | None = None

    # derived after merge
    ctr: float | None = None
    cpc: float | None = None
    approval_rate: float | None = None
    true_cpa: float | None = None


class AdsetPerformance(BaseModel):
    adset_id: str
    adset_name: str
    spend: float = 0.0
    clicks: int = 0
    impressions: int = 0
    conversions: float = 0.0
    ctr: float | None = None
    cpc: float | None = None


class AdPerformance(BaseModel):
    ad_id: str
    ad_name: str
    adset_id: str | None = None
    spend: float = 0.0
    clicks: int = 0
    impressions: int = 0
    conversions: float = 0.0
    ctr: float | None = None
    cpc: float | None = None


class AdLandingPage(BaseModel):
    """Engagement on one url for traffic from one ad."""

    url_path: str
    page_views: int = 0
    unique_visitors: int = 0
    bounce_rate: float | None = None
    scroll_past_hero: int = 0
    form_views: int = 0
    form_starters: int = 0
    avg_time_on_page: float | None = None

    @property
    def scroll_rate(self) -> float:
        return self.scroll_past_hero / self.page_views if self.page_views else 0.0

    @property
    def form_view_rate(self) -> float:
        return self.form_views / self.page_views if self.page_views else 0.0

    @property
    def form_start_rate(self) -> float:
        return self.form_starters / self.form_views if self.form_views else 0.0


class CampaignHierarchy(BaseModel):
    """Adsets, ads and per-ad landing pages under one campaign."""

    campaign_id: str
    adsets: list[AdsetPerformance] = Field(default_factory=list)
    ads: list[AdPerformance] = Field(default_factory=list)
    ad_landing_pages: dict[str, list[AdLandingPage]] = Field(default_factory=dict)
