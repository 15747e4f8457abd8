"""
In-process store — last-resort backend, lost on restart.

Request handling is serialized by the event loop, so no locking.
"""

from __future__ import annotations

from bookmark_analytics.schemas import CounterRecord, PeriodType
from bookmark_analytics.storage.base import Backend


class MemoryBackend(Backend):
    name = "memory"

    def __init__(self) -> None:
        self._records: dict[tuple[str, str, str], CounterRecord] = {}

    async def load(self, subject_id: str, period_type: PeriodType, period_key: str) -> CounterRecord | None:
        record = self._records.get((subject_id, PeriodType(period_type).value, period_key))
        return record.model_copy(deep=True) if record else None

    async def upsert(self, record: CounterRecord) -> CounterRecord:
        self._records[record.identity] = record.model_copy(deep=True)
        return record.model_copy(deep=True)

    async def delete(self, subject_id: str, period_type: PeriodType, period_key: str) -> bool:
        return self._records.pop((subject_id, PeriodType(period_type).value, period_key), None) is not None

    async def list_by_period_type(
        self, period_type: PeriodType, subject_id: str | None = None,
    ) -> list[CounterRecord]:
        wanted = PeriodType(period_type)
        return [
            r.model_copy(deep=True)
            for r in self._records.values()
            if r.period_type is wanted and (subject_id is None or r.subject_id == subject_id)
        ]
