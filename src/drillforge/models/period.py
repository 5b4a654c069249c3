"""Models for period-over-period views."""

from enum import Enum

from pydantic import BaseModel


class Granularity(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class TimePeriod(BaseModel):
    """One bucket of a larger date range.

    start_date / end_date are store-local "YYYY-MM-DD HH:MM:SS" strings so
    they can be bound straight into a mariadb BETWEEN.
    """

    key: str
    label: str
    start_date: str
    end_date: str


class RateType(str, Enum):
    """Which ratio a period pivot computes."""

    APPROVAL = "approval"
    PAY = "pay"
    BUY = "buy"


class PeriodRate(BaseModel):
    rate: float
    trials: int
    approved: int


class PeriodRateRow(BaseModel):
    """One dimension value with a rate per period, ready for a pivot table."""

    key: str  # parent values and this value joined with "::"
    attribute: str
    depth: int
    has_children: bool
    metrics: dict[str, PeriodRate]
