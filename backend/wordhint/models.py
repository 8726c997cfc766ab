from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class AnswerRecord(BaseModel):
    word: str
    sequence_number: int
    date: date
    source: str
    is_authoritative: bool


class ContentItem(BaseModel):
    id: str
    key: str  # lower-cased answer word
    title: str
    excerpt: str = ""
    body: str = ""  # opaque producer output (HTML)
    category: str
    tags: set[str] = Field(default_factory=set)
    difficulty: str = ""
    quality_score: int = Field(default=0, ge=0, le=100)
    sequence_number: int = 0
    published_at: datetime
    updated_at: datetime
    view_count: int = Field(default=0, ge=0)
    like_count: int = Field(default=0, ge=0)


class CacheStats(BaseModel):
    total: int
    expired: int
    valid: int


class StoreStats(BaseModel):
    total_articles: int
    total_keys: int
    categories: dict[str, int]
    total_views: int
    total_likes: int


class HealthReport(BaseModel):
    healthy: bool
    issues: list[str]
    last_run: datetime | None = None


class JobStatus(BaseModel):
    kind: str
    enabled: bool
    schedule: str  # "HH:MM" for wall-clock jobs, "<seconds>s" for interval jobs
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None


class SchedulerStatus(BaseModel):
    is_running: bool
    is_generating: bool
    next_daily_run: datetime | None = None
    jobs: list[JobStatus]
    options: dict[str, Any]


# ---------------------------------------------------------------------------
# HTTP request bodies
# ---------------------------------------------------------------------------


class AdminRequest(BaseModel):
    action: Literal[
        "start_scheduler",
        "stop_scheduler",
        "generate_articles",
        "clear_caches",
        "cleanup_caches",
        "force_today_generation",
        "force_refresh",
        "update_scheduler_options",
    ]
    word: str | None = None
    scheduler_options: dict[str, Any] | None = None


class AdminResponse(BaseModel):
    success: bool
    message: str
    articles: list[ContentItem] | None = None
