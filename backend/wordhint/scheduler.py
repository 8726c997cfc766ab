"""In-process scheduler for the four recurring jobs.

  daily_generation  one-shot timer re-armed after every run for the next
                    HH:MM occurrence, so wall-clock drift never accumulates
  cache_cleanup     every N hours: sweep caches, expire stale store content
  resolver_refresh  every N hours (and once at start): warm the answer cache
  health_check      every N minutes: log when unhealthy, never raise

Each job is one asyncio task. stop() cancels the tasks; a job body that is
already executing is shielded and runs to completion.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from . import config
from .cache import TTLCache
from .generator import ContentProducer, generate_articles
from .models import AnswerRecord, ContentItem, HealthReport, JobStatus, SchedulerStatus
from .resolver import AnswerResolver
from .store import ContentStore
from .words import sequence_number

logger = logging.getLogger(__name__)

_WALL_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


class JobKind(str, Enum):
    DAILY_GENERATION = "daily_generation"
    CACHE_CLEANUP = "cache_cleanup"
    RESOLVER_REFRESH = "resolver_refresh"
    HEALTH_CHECK = "health_check"


def parse_wall_clock(value: str) -> time:
    """'HH:MM' -> time. Raises ValueError on anything else."""
    m = _WALL_CLOCK_RE.match(value.strip()) if isinstance(value, str) else None
    if not m:
        raise ValueError(f"Invalid wall-clock time {value!r}, expected HH:MM")
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid wall-clock time {value!r}, expected HH:MM")
    return time(hours, minutes)


def next_daily_run(now: datetime, at: time) -> datetime:
    """Next occurrence of *at* strictly after *now*, in now's timezone."""
    target = datetime.combine(now.date(), at, tzinfo=now.tzinfo)
    if target <= now:
        target = datetime.combine(now.date() + timedelta(days=1), at, tzinfo=now.tzinfo)
    return target


def local_zone() -> tzinfo:
    """The server's timezone as a tz database zone, so DST shifts are honoured.

    Looks at $TZ, then /etc/localtime. Only when neither resolves does it
    settle for the current fixed UTC offset.
    """
    name = os.environ.get("TZ", "").lstrip(":")
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("[scheduler] TZ=%r is not a known zone.", name)
    try:
        with open("/etc/localtime", "rb") as fh:
            return ZoneInfo.from_file(fh, key="localtime")
    except (OSError, ValueError):
        logger.warning("[scheduler] No local tz database zone, using a fixed UTC offset.")
        return datetime.now().astimezone().tzinfo


@dataclass
class SchedulerOptions:
    enable_daily_generation: bool = True
    generation_time: str = config.GENERATION_TIME
    timezone: str = config.SCHEDULER_TIMEZONE
    enable_cache_cleanup: bool = True
    cache_cleanup_interval_hours: float = config.CACHE_CLEANUP_INTERVAL_HOURS
    enable_resolver_refresh: bool = True
    resolver_refresh_interval_hours: float = config.RESOLVER_REFRESH_INTERVAL_HOURS
    enable_health_check: bool = True
    health_check_interval_minutes: float = config.HEALTH_CHECK_INTERVAL_MINUTES

    def __post_init__(self) -> None:
        self.wall_clock = parse_wall_clock(self.generation_time)
        for name in (
            "enable_daily_generation",
            "enable_cache_cleanup",
            "enable_resolver_refresh",
            "enable_health_check",
        ):
            if not isinstance(getattr(self, name), bool):
                raise ValueError(f"{name} must be true or false, got {getattr(self, name)!r}")
        for name in (
            "cache_cleanup_interval_hours",
            "resolver_refresh_interval_hours",
            "health_check_interval_minutes",
        ):
            value = float(getattr(self, name))
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
            setattr(self, name, value)
        try:
            self.tz: tzinfo = ZoneInfo(self.timezone) if self.timezone else local_zone()
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone {self.timezone!r}") from exc

    def replace(self, **changes: Any) -> SchedulerOptions:
        unknown = set(changes) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise ValueError(f"Unknown scheduler options: {sorted(unknown)}")
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class ScheduledJob:
    kind: JobKind
    enabled: bool
    interval_seconds: float | None = None
    wall_clock: time | None = None
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None

    @property
    def schedule(self) -> str:
        if self.wall_clock is not None:
            return self.wall_clock.strftime("%H:%M")
        return f"{self.interval_seconds:g}s"

    def to_status(self) -> JobStatus:
        return JobStatus(
            kind=self.kind.value,
            enabled=self.enabled,
            schedule=self.schedule,
            last_run_at=self.last_run_at,
            next_run_at=self.next_run_at,
        )


@dataclass
class GenerationResult:
    record: AnswerRecord
    articles: list[ContentItem] = field(default_factory=list)


class Scheduler:
    def __init__(
        self,
        resolver: AnswerResolver,
        store: ContentStore,
        producer: ContentProducer = generate_articles,
        options: SchedulerOptions | None = None,
        caches: Iterable[TTLCache] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._resolver = resolver
        self._store = store
        self._producer = producer
        self._caches = list(caches)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.options = options or SchedulerOptions()

        self._tasks: dict[JobKind, asyncio.Task] = {}
        self._inflight: set[asyncio.Future] = set()
        self._generation_lock = asyncio.Lock()
        self.is_running = False
        self.is_generating = False
        self.last_generation: GenerationResult | None = None
        self.jobs: dict[JobKind, ScheduledJob] = self._build_jobs()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.is_running:
            logger.info("[scheduler] Already running.")
            return
        if not self._store.is_initialized:
            # Mirror pulls are blocking HTTP
            await asyncio.to_thread(self._store.initialize)

        for job in self.jobs.values():
            if job.enabled:
                self._tasks[job.kind] = asyncio.create_task(
                    self._loop(job), name=f"scheduler-{job.kind.value}"
                )
        self.is_running = True
        logger.info(
            "[scheduler] Started jobs: %s", ", ".join(k.value for k in self._tasks) or "none"
        )

    async def stop(self, drain: bool = False) -> None:
        """Cancel the timers. Job bodies already executing keep running.

        With *drain*, also wait for those bodies to finish (used at shutdown).
        """
        if self.is_running:
            self.is_running = False
            tasks = list(self._tasks.values())
            self._tasks.clear()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            for job in self.jobs.values():
                job.next_run_at = None
            logger.info("[scheduler] Stopped.")
        else:
            logger.info("[scheduler] Not running.")

        if drain and self._inflight:
            logger.info("[scheduler] Waiting for %d running job(s).", len(self._inflight))
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def update_options(self, **changes: Any) -> SchedulerOptions:
        """Apply new options by stopping and restarting; timers are never edited in place."""
        new_options = self.options.replace(**changes)
        was_running = self.is_running
        await self.stop()
        self.options = new_options
        self.jobs = self._build_jobs()
        if was_running:
            await self.start()
        logger.info("[scheduler] Options updated: %s", changes)
        return new_options

    @property
    def live_jobs(self) -> list[JobKind]:
        return [kind for kind, task in self._tasks.items() if not task.done()]

    def _build_jobs(self) -> dict[JobKind, ScheduledJob]:
        opts = self.options
        previous = getattr(self, "jobs", {})
        jobs = {
            JobKind.DAILY_GENERATION: ScheduledJob(
                JobKind.DAILY_GENERATION,
                opts.enable_daily_generation,
                wall_clock=opts.wall_clock,
            ),
            JobKind.CACHE_CLEANUP: ScheduledJob(
                JobKind.CACHE_CLEANUP,
                opts.enable_cache_cleanup,
                interval_seconds=opts.cache_cleanup_interval_hours * 3600,
            ),
            JobKind.RESOLVER_REFRESH: ScheduledJob(
                JobKind.RESOLVER_REFRESH,
                opts.enable_resolver_refresh,
                interval_seconds=opts.resolver_refresh_interval_hours * 3600,
            ),
            JobKind.HEALTH_CHECK: ScheduledJob(
                JobKind.HEALTH_CHECK,
                opts.enable_health_check,
                interval_seconds=opts.health_check_interval_minutes * 60,
            ),
        }
        for kind, job in jobs.items():
            if kind in previous:
                job.last_run_at = previous[kind].last_run_at
        return jobs

    # ------------------------------------------------------------------
    # Timer loops
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        return self._clock().astimezone(self.options.tz)

    def _arm(self, job: ScheduledJob) -> float:
        """Set job.next_run_at and return the delay until it, in seconds."""
        now = self._now()
        if job.wall_clock is not None:
            target = next_daily_run(now, job.wall_clock)
        else:
            target = now + timedelta(seconds=job.interval_seconds)
        job.next_run_at = target
        return max(0.0, target.timestamp() - now.timestamp())

    async def _loop(self, job: ScheduledJob) -> None:
        run_now = job.kind is JobKind.RESOLVER_REFRESH
        while True:
            if run_now:
                run_now = False
            else:
                delay = self._arm(job)
                logger.debug("[scheduler] %s next run at %s", job.kind.value, job.next_run_at)
                await asyncio.sleep(delay)
            await self._run(job)

    async def _run(self, job: ScheduledJob) -> None:
        body = {
            JobKind.DAILY_GENERATION: self._generate,
            JobKind.CACHE_CLEANUP: self._cleanup,
            JobKind.RESOLVER_REFRESH: self._refresh,
            JobKind.HEALTH_CHECK: self._health,
        }[job.kind]
        inner = asyncio.ensure_future(self._guarded(job, body))
        self._inflight.add(inner)
        inner.add_done_callback(self._inflight.discard)
        # Cancelling the loop must not interrupt a body mid-run
        await asyncio.shield(inner)

    async def _guarded(self, job: ScheduledJob, body: Callable[[], Awaitable[Any]]) -> None:
        try:
            await body()
        except Exception:
            logger.exception("[scheduler] %s failed.", job.kind.value)
        finally:
            job.last_run_at = self._now()

    # ------------------------------------------------------------------
    # Job bodies
    # ------------------------------------------------------------------

    async def _generate(self, word: str | None = None) -> GenerationResult:
        async with self._generation_lock:
            self.is_generating = True
            try:
                if word:
                    record = self._pinned_record(word)
                else:
                    self._resolver.invalidate()
                    record = await self._resolver.resolve_today()
                logger.info("[scheduler] Generating articles for %s (%s).", record.word, record.date)
                items = self._producer(record.word, record)
                # Write-through and mirror push block; keep them off the loop
                stored = await asyncio.to_thread(self._store.upsert_many, record.word, items)
                self.last_generation = GenerationResult(record=record, articles=stored)
                return self.last_generation
            finally:
                self.is_generating = False

    def _pinned_record(self, word: str) -> AnswerRecord:
        day: date = self._resolver.today()
        return AnswerRecord(
            word=word.strip().upper(),
            sequence_number=sequence_number(day),
            date=day,
            source="Manual",
            is_authoritative=False,
        )

    async def _cleanup(self) -> None:
        removed = 0
        seen: set[int] = set()
        for cache in [self._resolver.cache, *self._caches]:
            if id(cache) in seen:
                continue
            seen.add(id(cache))
            removed += cache.sweep_expired()
        expired = self._store.expire_if_stale()
        logger.info(
            "[scheduler] Cache cleanup: %d entries removed, store expired: %s.", removed, expired
        )

    async def _refresh(self) -> AnswerRecord:
        return await self._resolver.resolve_today()

    async def _health(self) -> None:
        report = self.health_check()
        if not report.healthy:
            logger.warning("[scheduler] Unhealthy: %s", "; ".join(report.issues))

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    async def trigger_manual_generation(self, word: str | None = None) -> GenerationResult:
        """Run the daily-generation body now, optionally for a pinned *word*."""
        job = self.jobs[JobKind.DAILY_GENERATION]
        logger.info("[scheduler] Manual generation requested (word=%s).", word or "today")
        try:
            return await self._generate(word)
        finally:
            job.last_run_at = self._now()

    async def force_refresh(self) -> AnswerRecord:
        """Re-resolve today's answer, bypassing the cache."""
        job = self.jobs[JobKind.RESOLVER_REFRESH]
        try:
            return await self._resolver.resolve_today(force=True)
        finally:
            job.last_run_at = self._now()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_status(self) -> SchedulerStatus:
        daily = self.jobs[JobKind.DAILY_GENERATION]
        return SchedulerStatus(
            is_running=self.is_running,
            is_generating=self.is_generating,
            next_daily_run=daily.next_run_at if self.is_running and daily.enabled else None,
            jobs=[job.to_status() for job in self.jobs.values()],
            options=self.options.to_dict(),
        )

    def health_check(self) -> HealthReport:
        issues: list[str] = []
        try:
            if not self._store.is_initialized:
                issues.append("Content store not initialized")
            if self.is_generating:
                issues.append("Article generation in progress")
            if not self.is_running:
                issues.append("Scheduler not running")
            last = self._resolver.last_record
            if last is not None and not last.is_authoritative:
                issues.append("Answer resolved from fallback")
        except Exception as exc:
            issues.append(f"Health check failed: {exc}")
        return HealthReport(
            healthy=not issues,
            issues=issues,
            last_run=self.jobs[JobKind.DAILY_GENERATION].last_run_at,
        )
