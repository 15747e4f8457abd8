"""
Analytics service — the operations the HTTP layer exposes.

Each call receives the selected ``Backend`` explicitly. An event is folded
into the subject's daily, weekly, monthly and total records one period at a
time: each record is loaded, merged and written back with absolute values.
Concurrent writers to the same record may therefore lose increments on every
backend, the hosted atomic upsert included.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from datetime import datetime, timedelta, timezone

from bookmark_analytics.errors import InvalidRequest
from bookmark_analytics.schemas import (
    AggregatedCounters,
    CategoryCount,
    CounterListResponse,
    CounterRecord,
    EventAction,
    EventPayload,
    GlobalStats,
    PeriodType,
    SummaryResponse,
    TopPerformer,
    TOTAL_KEY,
)
from bookmark_analytics.services.aggregator import CounterDelta, merge
from bookmark_analytics.services.periods import (
    as_utc,
    compute_bucket_keys,
    daily_key,
    retention_cutoffs,
)
from bookmark_analytics.storage.base import Backend

logger = logging.getLogger(__name__)

ALL_SUBJECTS = "ALL"


# ─────────────────────────────────────────────────────────────────────
# helpers
# ─────────────────────────────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validate(subject_id: str | None, action: str | EventAction | None) -> tuple[str, EventAction]:
    subject_id = (subject_id or "").strip()
    if not subject_id:
        raise InvalidRequest("Subject ID is required")
    try:
        return subject_id, EventAction(action)
    except ValueError:
        raise InvalidRequest(f"Invalid action: {action!r}") from None


def _bucket_targets(moment: datetime) -> dict[PeriodType, str]:
    keys = compute_bucket_keys(moment)
    return {
        PeriodType.DAILY: keys.daily_key,
        PeriodType.WEEKLY: keys.weekly_key,
        PeriodType.MONTHLY: keys.monthly_key,
        PeriodType.TOTAL: TOTAL_KEY,
    }


def _aggregate(subject_id: str, records: dict[PeriodType, CounterRecord | None]) -> AggregatedCounters:
    def visits(period_type: PeriodType) -> int:
        record = records.get(period_type)
        return record.visit_count if record else 0

    total = records.get(PeriodType.TOTAL)
    return AggregatedCounters(
        subject_id=subject_id,
        visits=visits(PeriodType.TOTAL),
        time_spent_seconds=total.time_spent_seconds if total else 0,
        daily_visits=visits(PeriodType.DAILY),
        weekly_visits=visits(PeriodType.WEEKLY),
        monthly_visits=visits(PeriodType.MONTHLY),
        categories_used=sorted(total.categories_used) if total else [],
        last_event_at=total.last_event_at if total else None,
    )


# ─────────────────────────────────────────────────────────────────────
# write side
# ─────────────────────────────────────────────────────────────────────

async def record_event(
    backend: Backend,
    subject_id: str,
    action: str | EventAction,
    payload: EventPayload | None = None,
    event_at: datetime | None = None,
    *,
    now: datetime | None = None,
) -> AggregatedCounters:
    """
    Fold one visit or time update into every period bucket of *subject_id*.

    A ``visit`` adds one visit; a ``timeUpdate`` adds ``time_spent_delta``
    seconds. Negative time deltas are ignored. Categories in the payload are
    unioned into each bucket either way.

    The four records are separate writes, daily first and total last. If one
    fails the error propagates and the buckets already written keep the
    event, so retrying the call counts it twice in those buckets.
    """
    subject_id, action = _validate(subject_id, action)
    payload = payload or EventPayload()
    if payload.time_spent_delta is not None and not math.isfinite(payload.time_spent_delta):
        raise InvalidRequest(f"Time spent must be a finite number, got {payload.time_spent_delta}")
    now = as_utc(now or _utcnow())
    event_at = as_utc(event_at) if event_at else now

    if payload.time_spent_delta is not None and payload.time_spent_delta < 0:
        logger.info("Ignoring negative time delta %s for %s", payload.time_spent_delta, subject_id)

    delta = CounterDelta.build(
        visit_delta=1 if action is EventAction.VISIT else 0,
        time_delta=payload.time_spent_delta or 0,
        categories=payload.categories,
        event_at=event_at,
    )

    stored: dict[PeriodType, CounterRecord | None] = {}
    for period_type, key in _bucket_targets(event_at).items():
        existing = await backend.load(subject_id, period_type, key)
        outcome = merge(
            existing, delta,
            subject_id=subject_id, period_type=period_type, period_key=key, now=now,
        )
        if outcome.new_bucket:
            logger.info(
                "🔁 %s rollover for %s: %s → %s",
                period_type.value, subject_id, existing.period_key, outcome.record.period_key,
            )
        stored[period_type] = await backend.upsert(outcome.record)

    logger.debug("Recorded %s for %s at %s", action.value, subject_id, event_at.isoformat())
    return _aggregate(subject_id, stored)


async def prune_expired(
    backend: Backend,
    *,
    now: datetime | None = None,
    daily_days: int = 30,
    weekly_buckets: int = 12,
    monthly_buckets: int = 12,
) -> dict[str, int]:
    """Delete bucketed records older than the retention horizon. Returns counts per period type."""
    cutoffs = retention_cutoffs(
        as_utc(now or _utcnow()),
        daily_days=daily_days,
        weekly_buckets=weekly_buckets,
        monthly_buckets=monthly_buckets,
    )
    removed: dict[str, int] = {}
    for period_type, cutoff in cutoffs.items():
        count = 0
        for record in await backend.list_by_period_type(period_type):
            if record.period_key < cutoff and await backend.delete(*record.identity):
                count += 1
        removed[period_type.value] = count

    if any(removed.values()):
        logger.info("🧹 Pruned expired analytics buckets: %s", removed)
    return removed


# ─────────────────────────────────────────────────────────────────────
# read side
# ─────────────────────────────────────────────────────────────────────

async def global_stats(
    backend: Backend,
    *,
    now: datetime | None = None,
    active_window_days: int = 7,
) -> CounterListResponse:
    now = as_utc(now or _utcnow())
    totals = await backend.list_by_period_type(PeriodType.TOTAL)
    totals.sort(key=lambda r: (-r.visit_count, r.subject_id))

    total_visits = sum(r.visit_count for r in totals)
    active_since = now - timedelta(days=active_window_days)
    active = sum(1 for r in totals if r.last_event_at and as_utc(r.last_event_at) >= active_since)
    top = totals[0] if totals else None

    stats = GlobalStats(
        total_visits=total_visits,
        total_subjects=len(totals),
        active_subjects=active,
        average_visits_per_subject=round(total_visits / len(totals), 2) if totals else 0.0,
        top_performer=TopPerformer(subject_id=top.subject_id, visits=top.visit_count) if top else None,
        last_updated=now,
    )
    return CounterListResponse(records=totals, global_stats=stats)


async def get_counters(
    backend: Backend,
    subject_id: str,
    *,
    as_of: datetime | None = None,
    now: datetime | None = None,
    active_window_days: int = 7,
) -> AggregatedCounters | CounterListResponse:
    """
    Counters for one subject, or the global listing when *subject_id* is ``"ALL"``.

    For a single subject the daily/weekly/monthly figures are those of the
    buckets containing *as_of*, which defaults to the subject's last event.
    Unknown subjects get zero-valued counters.
    """
    subject_id = (subject_id or "").strip()
    if not subject_id:
        raise InvalidRequest("Subject ID is required")
    if subject_id == ALL_SUBJECTS:
        return await global_stats(backend, now=now, active_window_days=active_window_days)

    total = await backend.load(subject_id, PeriodType.TOTAL, TOTAL_KEY)
    if total is None and as_of is None:
        return AggregatedCounters(subject_id=subject_id)

    moment = as_utc(as_of or (total.last_event_at if total else None) or now or _utcnow())
    records: dict[PeriodType, CounterRecord | None] = {PeriodType.TOTAL: total}
    for period_type, key in _bucket_targets(moment).items():
        if period_type is not PeriodType.TOTAL:
            records[period_type] = await backend.load(subject_id, period_type, key)
    return _aggregate(subject_id, records)


async def list_period(
    backend: Backend,
    period_type: PeriodType | str,
    *,
    subject_id: str | None = None,
    limit: int = 30,
) -> list[CounterRecord]:
    """Records of one period type, most recent bucket first."""
    records = await backend.list_by_period_type(PeriodType(period_type), subject_id=subject_id)
    records.sort(key=lambda r: r.subject_id)
    records.sort(key=lambda r: r.period_key, reverse=True)
    return records[:limit]


async def summarize(
    backend: Backend,
    *,
    now: datetime | None = None,
    window_days: int = 7,
    top_n: int = 5,
) -> SummaryResponse:
    """Totals plus the most used categories and recent activity from daily buckets."""
    now = as_utc(now or _utcnow())
    totals = await backend.list_by_period_type(PeriodType.TOTAL)
    dailies = await backend.list_by_period_type(PeriodType.DAILY)

    category_days: Counter[str] = Counter()
    for record in dailies:
        category_days.update(record.categories_used)
    ranked = sorted(category_days.items(), key=lambda kv: (-kv[1], kv[0]))[:top_n]

    since = daily_key(now - timedelta(days=window_days))
    recent = [r for r in dailies if r.period_key >= since]
    stamps = [as_utc(r.last_event_at) for r in totals if r.last_event_at]

    return SummaryResponse(
        total_visits=sum(r.visit_count for r in totals),
        total_time_spent_seconds=sum(r.time_spent_seconds for r in totals),
        top_categories=[CategoryCount(category=c, count=n) for c, n in ranked],
        visits_last_7_days=sum(r.visit_count for r in recent),
        time_spent_last_7_days=sum(r.time_spent_seconds for r in recent),
        last_event_at=max(stamps) if stamps else None,
    )
