"""
Hosted Postgres (Supabase) store with an upsert-with-fallback driver.

Every write goes through a small state machine:

1. atomic ``INSERT … ON CONFLICT (subject_id, period_type, period_key) DO UPDATE``;
2. table lacks the unique constraint (or the row vanished under an update)
   → read the row, then UPDATE or INSERT;
3. a column the application writes does not exist (SQLSTATE 42703) → retry
   once without that column. Only optional columns may be dropped, and each
   one is logged when first found missing; a lagging schema is a migration
   bug to fix;
4. connection problems → ``StorageUnavailable``; anything else →
   ``StorageError``. No further retries.

Columns found missing are remembered and left out of later reads and writes.

The atomic upsert makes a single row write safe, not a whole event: callers
write absolute counter values computed from an earlier read, so two writers
updating the same record concurrently can lose an increment on any path.
"""

from __future__ import annotations

import logging
import re
from enum import Enum

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, InterfaceError, NoResultFound, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine

from bookmark_analytics.database import init_db, close_db
from bookmark_analytics.errors import SchemaMismatch, StorageError, StorageUnavailable
from bookmark_analytics.migrations import run_migrations
from bookmark_analytics.models.counter_record import CounterRecordRow
from bookmark_analytics.schemas import CounterRecord, PeriodType
from bookmark_analytics.services.periods import as_utc
from bookmark_analytics.storage.base import Backend

logger = logging.getLogger(__name__)

KEY_COLUMNS = ("subject_id", "period_type", "period_key")
COUNTER_COLUMNS = ("visit_count", "time_spent_seconds")
OPTIONAL_COLUMNS = ("categories_used", "last_event_at", "created_at", "updated_at")
READ_COLUMNS = KEY_COLUMNS + COUNTER_COLUMNS + OPTIONAL_COLUMNS

_DB_ERRORS = (DBAPIError, NoResultFound, OSError)

_MISSING_COLUMN_PATTERNS = (
    re.compile(r'column "?(?:\w+\.)?(\w+)"? (?:of relation "?\w+"? )?does not exist', re.I),
    re.compile(r"has no column named (\w+)", re.I),
    re.compile(r"no such column: (?:\w+\.)?(\w+)", re.I),
)
_NO_CONFLICT_TARGET_HINTS = (
    "no unique or exclusion constraint matching the on conflict",
    "on conflict clause does not match",
)


class FailureKind(str, Enum):
    SCHEMA = "schema"
    UPSERT_UNSUPPORTED = "upsert_unsupported"
    UNAVAILABLE = "unavailable"
    OTHER = "other"


# ─────────────────────────────────────────────────────────────────────
# error classification
# ─────────────────────────────────────────────────────────────────────

def _sqlstate(exc: BaseException) -> str:
    orig = getattr(exc, "orig", None)
    return str(getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None) or "")


def _message(exc: BaseException) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig if orig is not None else exc)


def missing_column(exc: BaseException) -> str | None:
    """Name of the column the database says is missing, if it says."""
    text = _message(exc)
    for pattern in _MISSING_COLUMN_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def classify_error(exc: BaseException) -> FailureKind:
    code = _sqlstate(exc)
    text = _message(exc).lower()

    if code == "42703" or missing_column(exc):
        return FailureKind.SCHEMA
    if isinstance(exc, NoResultFound) or code == "42P10" or any(h in text for h in _NO_CONFLICT_TARGET_HINTS):
        return FailureKind.UPSERT_UNSUPPORTED
    if isinstance(exc, (OSError, OperationalError, InterfaceError)) or code.startswith("08"):
        return FailureKind.UNAVAILABLE
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return FailureKind.UNAVAILABLE
    return FailureKind.OTHER


def _translate(exc: BaseException, kind: FailureKind) -> StorageError:
    if kind is FailureKind.UNAVAILABLE:
        return StorageUnavailable(f"Hosted database unreachable: {_message(exc)}")
    if kind is FailureKind.SCHEMA:
        column = missing_column(exc)
        return SchemaMismatch(
            f"Hosted table is missing column {column or '?'}: {_message(exc)}",
            [column] if column else [],
        )
    return StorageError(f"Hosted database error: {_message(exc)}")


# ─────────────────────────────────────────────────────────────────────
# backend
# ─────────────────────────────────────────────────────────────────────

class HostedBackend(Backend):
    name = "hosted"

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._table = CounterRecordRow.__table__
        self._missing: set[str] = set()

    @property
    def missing_columns(self) -> list[str]:
        return sorted(self._missing)

    async def prepare(self) -> None:
        """Create the table if absent and add columns newer than the deployment."""
        try:
            await init_db(self._engine)
            await run_migrations(self._engine)
        except _DB_ERRORS as exc:
            raise _translate(exc, classify_error(exc)) from exc

    async def close(self) -> None:
        await close_db(self._engine)

    # ── row mapping ──

    @staticmethod
    def _to_values(record: CounterRecord) -> dict:
        return {
            "subject_id": record.subject_id,
            "period_type": record.period_type.value,
            "period_key": record.period_key,
            "visit_count": record.visit_count,
            "time_spent_seconds": record.time_spent_seconds,
            "categories_used": sorted(record.categories_used),
            "last_event_at": record.last_event_at,
            "created_at": record.created_at,
            "updated_at": record.updated_at,
        }

    @staticmethod
    def _from_row(row) -> CounterRecord:
        data = dict(row._mapping)
        stamps = {
            name: as_utc(data[name]) if data.get(name) else None
            for name in ("last_event_at", "created_at", "updated_at")
        }
        return CounterRecord(
            subject_id=data["subject_id"],
            period_type=PeriodType(data["period_type"]),
            period_key=data["period_key"],
            visit_count=data.get("visit_count") or 0,
            time_spent_seconds=data.get("time_spent_seconds") or 0,
            categories_used=set(data.get("categories_used") or []),
            **stamps,
        )

    def _where(self, subject_id: str, period_type: str, period_key: str):
        t = self._table
        return and_(
            t.c.subject_id == subject_id,
            t.c.period_type == period_type,
            t.c.period_key == period_key,
        )

    def _dialect_insert(self):
        name = self._engine.dialect.name
        if name == "postgresql":
            return postgresql.insert(self._table)
        if name == "sqlite":
            return sqlite.insert(self._table)
        raise StorageError(f"Atomic upsert not available for dialect {name!r}")

    # ── write strategies ──

    async def _atomic_upsert(self, values: dict) -> None:
        stmt = self._dialect_insert().values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(KEY_COLUMNS),
            set_={
                name: stmt.excluded[name]
                for name in values
                if name not in KEY_COLUMNS and name != "created_at"
            },
        )
        async with self._engine.begin() as conn:
            await conn.execute(stmt)

    async def _read_then_write(self, values: dict) -> None:
        where = self._where(values["subject_id"], values["period_type"], values["period_key"])
        changes = {k: v for k, v in values.items() if k not in KEY_COLUMNS and k != "created_at"}
        async with self._engine.begin() as conn:
            existing = (await conn.execute(select(self._table.c.id).where(where))).first()
            if existing:
                await conn.execute(update(self._table).where(where).values(**changes))
            else:
                await conn.execute(insert(self._table).values(**values))

    def _reduce(self, values: dict, exc: BaseException) -> dict:
        column = missing_column(exc)
        if column is None:
            dropped = [c for c in OPTIONAL_COLUMNS if c in values]
        elif column in OPTIONAL_COLUMNS:
            dropped = [column]
        else:
            raise SchemaMismatch(
                f"Hosted table is missing required column {column}", [column],
            ) from exc

        self._missing.update(dropped)
        logger.warning(
            "⚠️  bookmark_analytics is missing column(s) %s — retrying without them; run migrations",
            ", ".join(dropped),
        )
        return {k: v for k, v in values.items() if k not in dropped}

    async def _persist(self, values: dict) -> None:
        strategy = "upsert"
        schema_retried = False
        while True:
            try:
                if strategy == "upsert":
                    await self._atomic_upsert(values)
                else:
                    await self._read_then_write(values)
                return
            except _DB_ERRORS as exc:
                kind = classify_error(exc)
                if kind is FailureKind.UPSERT_UNSUPPORTED and strategy == "upsert":
                    logger.warning(
                        "Atomic upsert rejected for %s/%s/%s — falling back to read-then-write",
                        values["subject_id"], values["period_type"], values["period_key"],
                    )
                    strategy = "read_then_write"
                    continue
                if kind is FailureKind.SCHEMA and not schema_retried:
                    values = self._reduce(values, exc)
                    schema_retried = True
                    continue
                raise _translate(exc, kind) from exc

    # ── contract ──

    async def upsert(self, record: CounterRecord) -> CounterRecord:
        values = {k: v for k, v in self._to_values(record).items() if k not in self._missing}
        await self._persist(values)
        return record.model_copy(deep=True)

    async def _select(self, *criteria, order_desc: bool = False) -> list[CounterRecord]:
        for attempt in (1, 2):
            columns = [self._table.c[name] for name in READ_COLUMNS if name not in self._missing]
            stmt = select(*columns).where(*criteria)
            if order_desc:
                stmt = stmt.order_by(self._table.c.period_key.desc())
            try:
                async with self._engine.connect() as conn:
                    rows = (await conn.execute(stmt)).all()
                return [self._from_row(r) for r in rows]
            except _DB_ERRORS as exc:
                kind = classify_error(exc)
                column = missing_column(exc)
                if attempt == 1 and kind is FailureKind.SCHEMA and column in OPTIONAL_COLUMNS:
                    self._missing.add(column)
                    logger.warning("⚠️  bookmark_analytics is missing column %s — reading without it", column)
                    continue
                raise _translate(exc, kind) from exc
        return []

    async def load(self, subject_id: str, period_type: PeriodType, period_key: str) -> CounterRecord | None:
        rows = await self._select(self._where(subject_id, PeriodType(period_type).value, period_key))
        return rows[0] if rows else None

    async def delete(self, subject_id: str, period_type: PeriodType, period_key: str) -> bool:
        stmt = delete(self._table).where(self._where(subject_id, PeriodType(period_type).value, period_key))
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(stmt)
        except _DB_ERRORS as exc:
            raise _translate(exc, classify_error(exc)) from exc
        return (result.rowcount or 0) > 0

    async def list_by_period_type(
        self, period_type: PeriodType, subject_id: str | None = None,
    ) -> list[CounterRecord]:
        criteria = [self._table.c.period_type == PeriodType(period_type).value]
        if subject_id is not None:
            criteria.append(self._table.c.subject_id == subject_id)
        return await self._select(*criteria, order_desc=True)
