"""
Bookmark Analytics — Pydantic record and request/response schemas.

``CounterRecord`` is the one in-memory shape every backend converts to and
from; column casing is each backend's concern.
"""

from datetime import datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, Field, field_serializer


class PeriodType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    TOTAL = "total"


class EventAction(str, Enum):
    VISIT = "visit"
    TIME_UPDATE = "timeUpdate"


TOTAL_KEY = "total"


class CounterRecord(BaseModel):
    subject_id: str
    period_type: PeriodType
    period_key: str
    visit_count: int = 0
    time_spent_seconds: int = 0
    categories_used: set[str] = Field(default_factory=set)
    last_event_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.subject_id, self.period_type.value, self.period_key)

    @field_serializer("categories_used")
    def _sorted_categories(self, value: set[str]) -> list[str]:
        return sorted(value)


class EventPayload(BaseModel):
    time_spent_delta: float | None = None
    categories: list[str] = Field(default_factory=list)


class EventRequest(BaseModel):
    subject_id: str = Field(
        "",
        validation_alias=AliasChoices("subjectId", "bookmarkId", "subject_id"),
        max_length=64,
    )
    action: str = Field("", max_length=20)
    time_spent_delta: float | None = Field(
        None,
        validation_alias=AliasChoices("timeSpentDelta", "timeSpent", "time_spent_delta"),
    )
    categories: list[str] = Field(default_factory=list)
    event_at: datetime | None = Field(None, validation_alias=AliasChoices("eventAt", "event_at"))

    def payload(self) -> EventPayload:
        return EventPayload(time_spent_delta=self.time_spent_delta, categories=self.categories)


class AggregatedCounters(BaseModel):
    subject_id: str
    visits: int = 0
    time_spent_seconds: int = 0
    daily_visits: int = 0
    weekly_visits: int = 0
    monthly_visits: int = 0
    categories_used: list[str] = Field(default_factory=list)
    last_event_at: datetime | None = None


class TopPerformer(BaseModel):
    subject_id: str
    visits: int


class GlobalStats(BaseModel):
    total_visits: int = 0
    total_subjects: int = 0
    active_subjects: int = 0
    average_visits_per_subject: float = 0.0
    top_performer: TopPerformer | None = None
    last_updated: datetime | None = None


class CounterListResponse(BaseModel):
    records: list[CounterRecord]
    global_stats: GlobalStats


class PeriodListResponse(BaseModel):
    period_type: PeriodType
    records: list[CounterRecord]
    total: int


class CategoryCount(BaseModel):
    category: str
    count: int


class SummaryResponse(BaseModel):
    total_visits: int = 0
    total_time_spent_seconds: int = 0
    top_categories: list[CategoryCount] = Field(default_factory=list)
    visits_last_7_days: int = 0
    time_spent_last_7_days: int = 0
    last_event_at: datetime | None = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    backend: str
    missing_columns: list[str] = Field(default_factory=list)
