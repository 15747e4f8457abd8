"""
Period bucketing — canonical day / week / month keys.

Everything is computed in UTC. Weeks start on Monday, and the weekly key is
that Monday's date; every place that computes or compares weekly keys goes
through ``weekly_key`` so rollover detection stays consistent.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import NamedTuple

from bookmark_analytics.schemas import PeriodType, TOTAL_KEY


class BucketKeys(NamedTuple):
    daily_key: str
    weekly_key: str
    monthly_key: str


# ─────────────────────────────────────────────────────────────────────
# helpers
# ─────────────────────────────────────────────────────────────────────

def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _utc_date(moment: datetime) -> date:
    return as_utc(moment).date()


def _monday_of(day: date) -> date:
    # weekday(): Monday == 0 ... Sunday == 6, so Sunday steps back 6 days
    return day - timedelta(days=day.weekday())


def _shift_months(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


# ─────────────────────────────────────────────────────────────────────
# keys
# ─────────────────────────────────────────────────────────────────────

def daily_key(moment: datetime) -> str:
    return _utc_date(moment).isoformat()


def weekly_key(moment: datetime) -> str:
    return _monday_of(_utc_date(moment)).isoformat()


def monthly_key(moment: datetime) -> str:
    return _utc_date(moment).strftime("%Y-%m")


def compute_bucket_keys(now: datetime) -> BucketKeys:
    """Return the daily, weekly (Monday) and monthly keys containing *now*."""
    return BucketKeys(daily_key(now), weekly_key(now), monthly_key(now))


def period_key_for(period_type: PeriodType, moment: datetime) -> str:
    if period_type is PeriodType.DAILY:
        return daily_key(moment)
    if period_type is PeriodType.WEEKLY:
        return weekly_key(moment)
    if period_type is PeriodType.MONTHLY:
        return monthly_key(moment)
    return TOTAL_KEY


# ─────────────────────────────────────────────────────────────────────
# retention
# ─────────────────────────────────────────────────────────────────────

def retention_cutoffs(
    now: datetime,
    daily_days: int = 30,
    weekly_buckets: int = 12,
    monthly_buckets: int = 12,
) -> dict[PeriodType, str]:
    """
    Oldest period key to keep for each bucketed period type.

    Keys compare correctly as strings, so a record is expired when
    ``record.period_key < cutoff``.
    """
    today = _utc_date(now)
    year, month = _shift_months(today.year, today.month, -monthly_buckets)
    return {
        PeriodType.DAILY: (today - timedelta(days=daily_days)).isoformat(),
        PeriodType.WEEKLY: _monday_of(today - timedelta(weeks=weekly_buckets)).isoformat(),
        PeriodType.MONTHLY: f"{year:04d}-{month:02d}",
    }
