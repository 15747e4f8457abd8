"""
Local JSON-file store for development.

Layout on disk (camelCase, like the dashboard reads it)::

    {
      "daily":   {"<subjectId>": {"2026-01-15": {...record...}}},
      "weekly":  {"<subjectId>": {"2026-01-12": {...}}},
      "monthly": {"<subjectId>": {"2026-01": {...}}},
      "total":   {"<subjectId>": {"total": {...}}},
      "lastUpdated": "2026-01-15T10:00:00+00:00"
    }

Older files written with snake_case keys or epoch-millisecond timestamps
are still readable. There is no inter-process locking: two processes
writing the same file can lose updates.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from bookmark_analytics.errors import StorageError, StorageUnavailable
from bookmark_analytics.schemas import CounterRecord, PeriodType
from bookmark_analytics.storage.base import Backend

logger = logging.getLogger(__name__)


def _pick(raw: dict, *names: str, default: Any = None) -> Any:
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    return default


def _parse_ts(value: Any) -> datetime | None:
    if value in (None, "", 0):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def record_from_json(subject_id: str, period_type: PeriodType, period_key: str, raw: dict) -> CounterRecord:
    """Build a record from its stored form; malformed fields raise ``StorageError``."""
    try:
        return _record_from_json(subject_id, period_type, period_key, raw)
    except (TypeError, ValueError, OverflowError) as e:
        raise StorageError(
            f"Malformed {period_type.value} record {subject_id}/{period_key}: {e}"
        ) from e


def _record_from_json(subject_id: str, period_type: PeriodType, period_key: str, raw: dict) -> CounterRecord:
    return CounterRecord(
        subject_id=subject_id,
        period_type=period_type,
        period_key=period_key,
        visit_count=int(_pick(raw, "visitCount", "visit_count", "visits", default=0)),
        time_spent_seconds=int(_pick(raw, "timeSpentSeconds", "time_spent_seconds", "timeSpent", default=0)),
        categories_used=set(_pick(raw, "categoriesUsed", "categories_used", default=[])),
        last_event_at=_parse_ts(_pick(raw, "lastEventAt", "last_event_at", "lastVisited")),
        created_at=_parse_ts(_pick(raw, "createdAt", "created_at")),
        updated_at=_parse_ts(_pick(raw, "updatedAt", "updated_at", "timestamp")),
    )


def record_to_json(record: CounterRecord) -> dict:
    return {
        "visitCount": record.visit_count,
        "timeSpentSeconds": record.time_spent_seconds,
        "categoriesUsed": sorted(record.categories_used),
        "lastEventAt": _iso(record.last_event_at),
        "createdAt": _iso(record.created_at),
        "updatedAt": _iso(record.updated_at),
    }


class FileBackend(Backend):
    name = "file"

    def __init__(self, path: str | os.PathLike) -> None:
        self.path = Path(path)

    # ── document I/O ──

    def _read(self) -> dict:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageUnavailable(f"Cannot read {self.path}: {e}") from e

        try:
            doc = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as e:
            raise StorageError(f"Analytics file {self.path} is not valid JSON: {e}") from e
        if not isinstance(doc, dict):
            raise StorageError(f"Analytics file {self.path} does not hold a JSON object")
        return doc

    def _write(self, doc: dict) -> None:
        doc["lastUpdated"] = datetime.now(timezone.utc).isoformat()
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(doc, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageUnavailable(f"Cannot write {self.path}: {e}") from e

    # ── contract ──

    async def load(self, subject_id: str, period_type: PeriodType, period_key: str) -> CounterRecord | None:
        period_type = PeriodType(period_type)
        raw = self._read().get(period_type.value, {}).get(subject_id, {}).get(period_key)
        if not isinstance(raw, dict):
            return None
        return record_from_json(subject_id, period_type, period_key, raw)

    async def upsert(self, record: CounterRecord) -> CounterRecord:
        doc = self._read()
        bucket = doc.setdefault(record.period_type.value, {}).setdefault(record.subject_id, {})
        bucket[record.period_key] = record_to_json(record)
        self._write(doc)
        return record.model_copy(deep=True)

    async def delete(self, subject_id: str, period_type: PeriodType, period_key: str) -> bool:
        doc = self._read()
        period_type = PeriodType(period_type)
        by_subject = doc.get(period_type.value, {})
        bucket = by_subject.get(subject_id, {})
        if period_key not in bucket:
            return False
        del bucket[period_key]
        if not bucket:
            del by_subject[subject_id]
        self._write(doc)
        return True

    async def list_by_period_type(
        self, period_type: PeriodType, subject_id: str | None = None,
    ) -> list[CounterRecord]:
        period_type = PeriodType(period_type)
        by_subject = self._read().get(period_type.value, {})
        records: list[CounterRecord] = []
        for sid, bucket in by_subject.items():
            if subject_id is not None and sid != subject_id:
                continue
            if not isinstance(bucket, dict):
                logger.warning("Skipping malformed %s entry for %s in %s", period_type.value, sid, self.path)
                continue
            for key, raw in bucket.items():
                if not isinstance(raw, dict):
                    continue
                try:
                    records.append(record_from_json(sid, period_type, key, raw))
                except StorageError as e:
                    logger.warning("Skipping %s in %s", e, self.path)
        return records
