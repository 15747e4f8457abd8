"""
Tests for the analytics service — record_event / get_counters end to end,
backend parity, global stats, summary and retention.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from bookmark_analytics.errors import InvalidRequest, StorageUnavailable
from bookmark_analytics.schemas import AggregatedCounters, CounterListResponse, EventPayload, PeriodType
from bookmark_analytics.services import analytics
from bookmark_analytics.storage import MemoryBackend

MON_JAN_1 = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
TUE_JAN_2 = datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)
MON_JAN_8 = datetime(2024, 1, 8, 10, 0, tzinfo=timezone.utc)


async def _visit(backend, subject_id, at, categories=()):
    return await analytics.record_event(
        backend, subject_id, "visit", EventPayload(categories=list(categories)), at, now=at,
    )


class TestRecordEvent:
    async def test_first_visit(self, backend):
        counters = await _visit(backend, "bm-1", MON_JAN_1, ["dev"])
        assert counters == AggregatedCounters(
            subject_id="bm-1",
            visits=1,
            time_spent_seconds=0,
            daily_visits=1,
            weekly_visits=1,
            monthly_visits=1,
            categories_used=["dev"],
            last_event_at=MON_JAN_1,
        )

    async def test_writes_every_period(self, backend):
        await _visit(backend, "bm-1", MON_JAN_1)
        assert await backend.load("bm-1", PeriodType.DAILY, "2024-01-01")
        assert await backend.load("bm-1", PeriodType.WEEKLY, "2024-01-01")
        assert await backend.load("bm-1", PeriodType.MONTHLY, "2024-01")
        assert await backend.load("bm-1", PeriodType.TOTAL, "total")

    async def test_time_update_adds_seconds_only(self, memory_backend):
        counters = await analytics.record_event(
            memory_backend, "bm-1", "timeUpdate", EventPayload(time_spent_delta=45.9), MON_JAN_1,
        )
        assert counters.visits == 0
        assert counters.time_spent_seconds == 45

    async def test_event_time_defaults_to_now(self, memory_backend):
        counters = await analytics.record_event(memory_backend, "bm-1", "visit", now=MON_JAN_1)
        assert counters.last_event_at == MON_JAN_1

    @pytest.mark.parametrize("subject_id", ["", "   ", None])
    async def test_subject_required(self, memory_backend, subject_id):
        with pytest.raises(InvalidRequest):
            await analytics.record_event(memory_backend, subject_id, "visit")

    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    async def test_non_finite_time_rejected(self, memory_backend, value):
        with pytest.raises(InvalidRequest):
            await analytics.record_event(
                memory_backend, "bm-1", "timeUpdate", EventPayload(time_spent_delta=value), MON_JAN_1,
            )
        assert await memory_backend.list_by_period_type(PeriodType.TOTAL) == []

    async def test_unknown_action(self, memory_backend):
        with pytest.raises(InvalidRequest) as exc_info:
            await analytics.record_event(memory_backend, "bm-1", "delete")
        assert exc_info.value.retryable is False
        assert await memory_backend.list_by_period_type(PeriodType.TOTAL) == []


class _TotalWriteFails(MemoryBackend):
    async def upsert(self, record):
        if record.period_type is PeriodType.TOTAL:
            raise StorageUnavailable("connection reset")
        return await super().upsert(record)


class TestPartialWrite:
    async def test_failure_surfaces_and_earlier_buckets_keep_the_event(self):
        backend = _TotalWriteFails()
        with pytest.raises(StorageUnavailable):
            await _visit(backend, "bm-1", MON_JAN_1)

        assert (await backend.load("bm-1", PeriodType.DAILY, "2024-01-01")).visit_count == 1
        assert (await backend.load("bm-1", PeriodType.MONTHLY, "2024-01")).visit_count == 1
        assert await backend.load("bm-1", PeriodType.TOTAL, "total") is None


class TestScenarios:
    async def test_two_visits_same_week(self, backend):
        await _visit(backend, "bm-1", MON_JAN_1)
        await _visit(backend, "bm-1", TUE_JAN_2)

        counters = await analytics.get_counters(backend, "bm-1")
        assert counters.visits == 2
        assert counters.weekly_visits == 2
        assert counters.monthly_visits == 2
        assert counters.daily_visits == 1

    async def test_visit_next_monday_rolls_week(self, backend):
        await _visit(backend, "bm-1", MON_JAN_1)
        await _visit(backend, "bm-1", MON_JAN_8)

        weekly = await analytics.list_period(backend, PeriodType.WEEKLY, subject_id="bm-1")
        assert [(r.period_key, r.visit_count) for r in weekly] == [
            ("2024-01-08", 1),
            ("2024-01-01", 1),
        ]

        counters = await analytics.get_counters(backend, "bm-1")
        assert counters.visits == 2
        assert counters.weekly_visits == 1
        assert counters.monthly_visits == 2

    async def test_negative_time_is_clamped(self, backend):
        first = await analytics.record_event(
            backend, "bm-2", "timeUpdate", EventPayload(time_spent_delta=120), MON_JAN_1,
        )
        second = await analytics.record_event(
            backend, "bm-2", "timeUpdate", EventPayload(time_spent_delta=-50), MON_JAN_1,
        )
        assert first.time_spent_seconds == 120
        assert second.time_spent_seconds == 120
        assert (await analytics.get_counters(backend, "bm-2")).time_spent_seconds == 120


class TestBackendParity:
    async def test_memory_and_file_agree(self, memory_backend, file_backend):
        events = [
            ("bm-1", "visit", EventPayload(categories=["dev"]), MON_JAN_1),
            ("bm-1", "timeUpdate", EventPayload(time_spent_delta=30), MON_JAN_1 + timedelta(minutes=5)),
            ("bm-2", "visit", EventPayload(categories=["news", "dev"]), TUE_JAN_2),
            ("bm-1", "visit", EventPayload(), MON_JAN_8),
            ("bm-1", "timeUpdate", EventPayload(time_spent_delta=-5), MON_JAN_8),
        ]

        results = {}
        for name, backend in (("memory", memory_backend), ("file", file_backend)):
            results[name] = [
                await analytics.record_event(backend, sid, action, payload, at, now=at)
                for sid, action, payload, at in events
            ]
            results[name].append(await analytics.get_counters(backend, "bm-1"))

        assert results["memory"] == results["file"]


class TestGetCounters:
    async def test_unknown_subject_is_zero(self, backend):
        counters = await analytics.get_counters(backend, "nope")
        assert counters == AggregatedCounters(subject_id="nope")

    async def test_as_of_selects_bucket(self, memory_backend):
        await _visit(memory_backend, "bm-1", MON_JAN_1)
        await _visit(memory_backend, "bm-1", MON_JAN_8)

        counters = await analytics.get_counters(memory_backend, "bm-1", as_of=MON_JAN_1)
        assert counters.daily_visits == 1
        assert counters.weekly_visits == 1
        assert counters.visits == 2

    async def test_blank_subject_rejected(self, memory_backend):
        with pytest.raises(InvalidRequest):
            await analytics.get_counters(memory_backend, " ")

    async def test_all_subjects(self, backend):
        now = MON_JAN_8 + timedelta(hours=2)
        await _visit(backend, "bm-1", MON_JAN_8)
        await _visit(backend, "bm-1", MON_JAN_8)
        await _visit(backend, "bm-1", MON_JAN_8)
        await _visit(backend, "bm-2", MON_JAN_8)
        await _visit(backend, "bm-old", MON_JAN_8 - timedelta(days=30))

        result = await analytics.get_counters(backend, "ALL", now=now)

        assert isinstance(result, CounterListResponse)
        assert [r.subject_id for r in result.records] == ["bm-1", "bm-2", "bm-old"]
        stats = result.global_stats
        assert stats.total_visits == 5
        assert stats.total_subjects == 3
        assert stats.active_subjects == 2
        assert stats.average_visits_per_subject == 1.67
        assert stats.top_performer.subject_id == "bm-1"
        assert stats.top_performer.visits == 3

    async def test_all_subjects_empty(self, memory_backend):
        result = await analytics.get_counters(memory_backend, "ALL")
        assert result.records == []
        assert result.global_stats.total_visits == 0
        assert result.global_stats.average_visits_per_subject == 0.0
        assert result.global_stats.top_performer is None


class TestListPeriod:
    async def test_newest_first_with_limit(self, memory_backend):
        for day in range(1, 6):
            await _visit(memory_backend, "bm-1", datetime(2024, 3, day, 9, tzinfo=timezone.utc))

        records = await analytics.list_period(memory_backend, "daily", limit=3)
        assert [r.period_key for r in records] == ["2024-03-05", "2024-03-04", "2024-03-03"]


class TestSummarize:
    async def test_categories_and_recent_activity(self, memory_backend):
        now = datetime(2024, 3, 10, 12, tzinfo=timezone.utc)
        await _visit(memory_backend, "bm-1", datetime(2024, 3, 9, tzinfo=timezone.utc), ["dev", "news"])
        await _visit(memory_backend, "bm-1", datetime(2024, 3, 8, tzinfo=timezone.utc), ["dev"])
        await _visit(memory_backend, "bm-2", datetime(2024, 1, 8, tzinfo=timezone.utc), ["tools"])
        await analytics.record_event(
            memory_backend, "bm-2", "timeUpdate", EventPayload(time_spent_delta=60),
            datetime(2024, 3, 9, tzinfo=timezone.utc),
        )

        summary = await analytics.summarize(memory_backend, now=now)

        assert summary.total_visits == 3
        assert summary.total_time_spent_seconds == 60
        assert [(c.category, c.count) for c in summary.top_categories] == [
            ("dev", 2), ("news", 1), ("tools", 1),
        ]
        assert summary.visits_last_7_days == 2
        assert summary.time_spent_last_7_days == 60
        assert summary.last_event_at == datetime(2024, 3, 9, tzinfo=timezone.utc)


class TestPruneExpired:
    async def test_drops_only_expired_buckets(self, backend):
        await _visit(backend, "bm-1", datetime(2023, 1, 15, tzinfo=timezone.utc))
        await _visit(backend, "bm-1", datetime(2024, 5, 1, tzinfo=timezone.utc))
        await _visit(backend, "bm-1", datetime(2024, 6, 10, tzinfo=timezone.utc))

        removed = await analytics.prune_expired(backend, now=datetime(2024, 6, 15, 12, tzinfo=timezone.utc))

        assert removed == {"daily": 2, "weekly": 1, "monthly": 1}
        daily = {r.period_key for r in await backend.list_by_period_type(PeriodType.DAILY)}
        assert daily == {"2024-06-10"}
        weekly = {r.period_key for r in await backend.list_by_period_type(PeriodType.WEEKLY)}
        assert weekly == {"2024-04-29", "2024-06-10"}
        monthly = {r.period_key for r in await backend.list_by_period_type(PeriodType.MONTHLY)}
        assert monthly == {"2024-05", "2024-06"}
        total = await backend.load("bm-1", PeriodType.TOTAL, "total")
        assert total.visit_count == 3

    async def test_nothing_to_prune(self, memory_backend):
        removed = await analytics.prune_expired(memory_backend)
        assert removed == {"daily": 0, "weekly": 0, "monthly": 0}

    async def test_malformed_file_record_does_not_block_pruning(self, file_backend):
        await _visit(file_backend, "bm-1", datetime(2023, 1, 15, tzinfo=timezone.utc))
        doc = json.loads(file_backend.path.read_text(encoding="utf-8"))
        doc["daily"]["bm-2"] = {"2023-02-01": {"visitCount": 1, "lastEventAt": "yesterday"}}
        file_backend.path.write_text(json.dumps(doc), encoding="utf-8")

        removed = await analytics.prune_expired(file_backend, now=datetime(2024, 6, 15, tzinfo=timezone.utc))

        assert removed == {"daily": 1, "weekly": 1, "monthly": 1}
