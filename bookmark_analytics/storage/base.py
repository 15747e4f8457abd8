"""
Storage backend contract shared by the hosted, file and memory stores.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from bookmark_analytics.schemas import CounterRecord, PeriodType


class Backend(ABC):
    """Async load / upsert / delete / list over counter records."""

    name = "abstract"

    @abstractmethod
    async def load(self, subject_id: str, period_type: PeriodType, period_key: str) -> CounterRecord | None:
        ...

    @abstractmethod
    async def upsert(self, record: CounterRecord) -> CounterRecord:
        """Store *record* by its identity, replacing any previous version."""

    @abstractmethod
    async def delete(self, subject_id: str, period_type: PeriodType, period_key: str) -> bool:
        ...

    @abstractmethod
    async def list_by_period_type(
        self, period_type: PeriodType, subject_id: str | None = None,
    ) -> list[CounterRecord]:
        ...

    async def prepare(self) -> None:
        """One-time setup when the backend is selected."""
        return None

    @property
    def missing_columns(self) -> list[str]:
        return []

    async def close(self) -> None:
        return None
