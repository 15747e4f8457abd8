"""
Counter aggregation — folds one event delta into a counter record.

``merge`` is total: negative deltas are clamped to zero so counters never go
down, categories only ever grow, and an event that belongs to a different
bucket than the existing record yields a fresh record instead of mutating
the old one.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Iterable, NamedTuple

from bookmark_analytics.schemas import CounterRecord, PeriodType
from bookmark_analytics.services.periods import as_utc, period_key_for


def _non_negative(value: float | None) -> int:
    """Whole units of *value*; negative, NaN and infinite inputs count as zero."""
    value = float(value or 0)
    if not math.isfinite(value):
        return 0
    return max(0, int(value))


class CounterDelta(NamedTuple):
    visit_delta: int
    time_delta: int
    categories_added: frozenset[str]
    event_at: datetime

    @classmethod
    def build(
        cls,
        visit_delta: float = 0,
        time_delta: float = 0,
        categories: Iterable[str] = (),
        event_at: datetime | None = None,
    ) -> "CounterDelta":
        return cls(
            visit_delta=_non_negative(visit_delta),
            time_delta=_non_negative(time_delta),
            categories_added=frozenset(c for c in categories if c),
            event_at=as_utc(event_at or datetime.now(timezone.utc)),
        )


class MergeOutcome(NamedTuple):
    record: CounterRecord
    new_bucket: bool


def _fresh(
    subject_id: str,
    period_type: PeriodType,
    period_key: str,
    delta: CounterDelta,
    now: datetime,
) -> CounterRecord:
    return CounterRecord(
        subject_id=subject_id,
        period_type=period_type,
        period_key=period_key,
        visit_count=max(0, delta.visit_delta),
        time_spent_seconds=max(0, delta.time_delta),
        categories_used=set(delta.categories_added),
        last_event_at=delta.event_at,
        created_at=now,
        updated_at=now,
    )


def needs_new_bucket(existing: CounterRecord, delta: CounterDelta) -> bool:
    """True when *delta*'s event falls outside the bucket *existing* covers."""
    return period_key_for(existing.period_type, delta.event_at) != existing.period_key


def merge(
    existing: CounterRecord | None,
    delta: CounterDelta,
    *,
    subject_id: str,
    period_type: PeriodType,
    period_key: str | None = None,
    now: datetime | None = None,
) -> MergeOutcome:
    """
    Fold *delta* into *existing* (or start a new record).

    ``period_key`` defaults to the key of the bucket containing the event.
    When *existing* belongs to another bucket (week rollover, or a new
    day/month) it is left untouched and ``new_bucket`` is set on the
    returned outcome; the caller persists the fresh record under the new key.
    """
    now = as_utc(now or datetime.now(timezone.utc))
    key = period_key or period_key_for(period_type, delta.event_at)

    if existing is None:
        return MergeOutcome(_fresh(subject_id, period_type, key, delta, now), False)

    if needs_new_bucket(existing, delta):
        rolled_key = period_key_for(existing.period_type, delta.event_at)
        return MergeOutcome(_fresh(subject_id, existing.period_type, rolled_key, delta, now), True)

    last_seen = existing.last_event_at
    last_event_at = delta.event_at if last_seen is None else max(as_utc(last_seen), delta.event_at)

    merged = existing.model_copy(
        update={
            "visit_count": existing.visit_count + max(0, delta.visit_delta),
            "time_spent_seconds": existing.time_spent_seconds + max(0, delta.time_delta),
            "categories_used": set(existing.categories_used) | delta.categories_added,
            "last_event_at": last_event_at,
            "created_at": existing.created_at or now,
            "updated_at": now,
        }
    )
    return MergeOutcome(merged, False)
