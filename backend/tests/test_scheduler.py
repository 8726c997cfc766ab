"""Tests for the in-process scheduler: timers, lifecycle, manual triggers, health."""

import asyncio
import time as clock_time
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

import httpx
import pytest
from conftest import EndpointStub, FakeClock
from wordhint.cache import TTLCache
from wordhint.mirror import SnapshotMirror
from wordhint.resolver import AnswerResolver
from wordhint.scheduler import (
    JobKind,
    Scheduler,
    SchedulerOptions,
    local_zone,
    next_daily_run,
    parse_wall_clock,
)
from wordhint.store import ContentStore

A = "https://a.example/today"
PARIS = ZoneInfo("Europe/Paris")

ONLY = {
    "enable_daily_generation": False,
    "enable_cache_cleanup": False,
    "enable_resolver_refresh": False,
    "enable_health_check": False,
}


class SlowMirror(SnapshotMirror):
    """Mirror whose network calls block the calling thread."""

    name = "slow"

    def __init__(self, push_delay=0.0, pull_delay=0.0):
        self.push_delay = push_delay
        self.pull_delay = pull_delay
        self.pushes = 0

    def push(self, snapshot):
        clock_time.sleep(self.push_delay)
        self.pushes += 1

    def pull(self):
        clock_time.sleep(self.pull_delay)
        return None


def make_scheduler(tmp_path, clock, handler=None, producer=None, mirror=None, **overrides):
    handler = handler or EndpointStub({A: {"word": "crane"}})
    resolver = AnswerResolver(
        [A],
        TTLCache(24 * 3600, clock=clock.time),
        api_key="",
        clock=clock.now,
        answer_timezone="UTC",
        resolve_timeout=2.0,
        transport=httpx.MockTransport(handler),
    )
    store = ContentStore(tmp_path, mirror=mirror, clock=clock.time)
    options = SchedulerOptions(**{"timezone": "UTC", **overrides})
    kwargs = {"producer": producer} if producer else {}
    return Scheduler(resolver, store, options=options, clock=clock.now, **kwargs)


async def max_loop_gap(coro):
    """Run *coro* while a 20ms heartbeat measures the longest stall of the event loop."""
    gaps = []

    async def heartbeat():
        last = clock_time.monotonic()
        while True:
            await asyncio.sleep(0.02)
            now = clock_time.monotonic()
            gaps.append(now - last)
            last = now

    beat = asyncio.create_task(heartbeat())
    try:
        result = await coro
    finally:
        beat.cancel()
    return result, max(gaps, default=0.0)


# ── wall-clock helpers ────────────────────────────────────────────────────

class TestWallClock:
    def test_parse(self):
        assert parse_wall_clock("00:01") == time(0, 1)
        assert parse_wall_clock("7:05") == time(7, 5)

    @pytest.mark.parametrize("value", ["24:00", "12:60", "noon", "", "12:5"])
    def test_parse_rejects(self, value):
        with pytest.raises(ValueError):
            parse_wall_clock(value)

    def test_later_today(self):
        now = datetime(2024, 3, 1, 0, 0, tzinfo=timezone.utc)
        assert next_daily_run(now, time(0, 1)) == datetime(2024, 3, 1, 0, 1, tzinfo=timezone.utc)

    def test_passed_today_moves_to_tomorrow(self):
        now = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
        assert next_daily_run(now, time(0, 1)) == datetime(2024, 3, 2, 0, 1, tzinfo=timezone.utc)

    def test_exact_time_moves_to_tomorrow(self):
        now = datetime(2024, 3, 1, 0, 1, tzinfo=timezone.utc)
        assert next_daily_run(now, time(0, 1)).day == 2

    def test_month_end(self):
        now = datetime(2024, 2, 29, 23, 0, tzinfo=timezone.utc)
        assert next_daily_run(now, time(0, 0)) == datetime(2024, 3, 1, tzinfo=timezone.utc)

    def test_spring_forward_keeps_local_time(self):
        now = datetime(2024, 3, 30, 10, 0, tzinfo=PARIS)
        target = next_daily_run(now, time(3, 0))
        assert (target.hour, target.utcoffset().total_seconds()) == (3, 7200)


class TestOptions:
    def test_defaults_validate(self):
        opts = SchedulerOptions(generation_time="00:01", timezone="UTC")
        assert opts.wall_clock == time(0, 1)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"generation_time": "25:00"},
            {"cache_cleanup_interval_hours": 0},
            {"health_check_interval_minutes": -1},
            {"timezone": "Mars/Olympus_Mons"},
            {"enable_health_check": "false"},
            {"enable_cache_cleanup": 1},
        ],
    )
    def test_invalid_fails_fast(self, overrides):
        with pytest.raises(ValueError):
            SchedulerOptions(**overrides)

    def test_replace_rejects_unknown(self):
        with pytest.raises(ValueError):
            SchedulerOptions(timezone="UTC").replace(bogus=1)

    def test_replace_rejects_string_flag(self):
        with pytest.raises(ValueError):
            SchedulerOptions(timezone="UTC").replace(enable_daily_generation="no")


class TestLocalZone:
    def test_named_zone_from_tz(self, monkeypatch):
        monkeypatch.setenv("TZ", "Europe/Paris")
        assert local_zone() == PARIS

    def test_empty_timezone_uses_local_zone(self, monkeypatch):
        monkeypatch.setenv("TZ", "Europe/Paris")
        assert SchedulerOptions(timezone="").tz == PARIS

    def test_daily_run_in_local_zone_across_dst(self, tmp_path, monkeypatch):
        monkeypatch.setenv("TZ", "Europe/Paris")
        clock = FakeClock(datetime(2024, 3, 30, 9, 0, tzinfo=timezone.utc))
        scheduler = make_scheduler(tmp_path, clock, timezone="", generation_time="03:00")
        job = scheduler.jobs[JobKind.DAILY_GENERATION]

        delay = scheduler._arm(job)

        assert job.next_run_at.astimezone(PARIS).hour == 3
        assert job.next_run_at == datetime(2024, 3, 31, 1, 0, tzinfo=timezone.utc)
        assert delay == 16 * 3600


# ── start / stop ──────────────────────────────────────────────────────────

class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_task_per_job(self, tmp_path, clock):
        scheduler = make_scheduler(tmp_path, clock)
        await scheduler.start()
        try:
            tasks = dict(scheduler._tasks)
            await scheduler.start()
            assert scheduler._tasks == tasks
            assert sorted(scheduler.live_jobs) == sorted(JobKind)
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, tmp_path, clock):
        scheduler = make_scheduler(tmp_path, clock)
        await scheduler.stop()
        await scheduler.start()
        await scheduler.stop()
        await scheduler.stop()
        assert scheduler.is_running is False
        assert scheduler.live_jobs == []

    @pytest.mark.asyncio
    async def test_disabled_jobs_not_started(self, tmp_path, clock):
        scheduler = make_scheduler(tmp_path, clock, enable_health_check=False)
        await scheduler.start()
        try:
            assert JobKind.HEALTH_CHECK not in scheduler.live_jobs
            assert len(scheduler.live_jobs) == 3
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_start_initializes_store(self, tmp_path, clock):
        scheduler = make_scheduler(tmp_path, clock, **ONLY)
        await scheduler.start()
        assert scheduler._store.is_initialized
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_refresh_runs_immediately(self, tmp_path, clock):
        stub = EndpointStub({A: {"word": "crane"}})
        scheduler = make_scheduler(tmp_path, clock, handler=stub)
        await scheduler.start()
        try:
            await asyncio.sleep(0.05)
            assert stub.calls == [A]
            assert scheduler.jobs[JobKind.RESOLVER_REFRESH].last_run_at is not None
        finally:
            await scheduler.stop()


# ── timers ────────────────────────────────────────────────────────────────

class TestTimers:
    @pytest.mark.asyncio
    async def test_interval_job_repeats_until_stopped(self, tmp_path, clock):
        scheduler = make_scheduler(
            tmp_path, clock, **{**ONLY, "enable_cache_cleanup": True},
            cache_cleanup_interval_hours=0.00001,
        )
        runs = []

        async def cleanup():
            runs.append(1)

        scheduler._cleanup = cleanup
        await scheduler.start()
        await asyncio.sleep(0.3)
        await scheduler.stop()
        after_stop = len(runs)
        await asyncio.sleep(0.15)

        assert after_stop >= 2
        assert len(runs) == after_stop

    @pytest.mark.asyncio
    async def test_daily_generation_fires_at_wall_clock(self, tmp_path):
        clock = FakeClock(datetime(2024, 2, 29, 23, 59, 59, 900000, tzinfo=timezone.utc))
        scheduler = make_scheduler(
            tmp_path, clock, **{**ONLY, "enable_daily_generation": True}, generation_time="00:00"
        )
        await scheduler.start()
        try:
            await asyncio.sleep(0.01)
            job = scheduler.jobs[JobKind.DAILY_GENERATION]
            assert job.next_run_at == datetime(2024, 3, 1, tzinfo=timezone.utc)
            await asyncio.sleep(0.3)
            assert job.last_run_at is not None
            assert len(scheduler._store.get_by_key("crane")) == 5
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_failing_body_keeps_loop_alive(self, tmp_path):
        clock = FakeClock(datetime(2024, 2, 29, 23, 59, 59, 950000, tzinfo=timezone.utc))
        calls = []

        def broken_producer(word, record):
            calls.append(word)
            raise RuntimeError("template exploded")

        scheduler = make_scheduler(
            tmp_path,
            clock,
            producer=broken_producer,
            **{**ONLY, "enable_daily_generation": True},
            generation_time="00:00",
        )
        await scheduler.start()
        try:
            await asyncio.sleep(0.3)
            assert len(calls) >= 2
            assert scheduler.live_jobs == [JobKind.DAILY_GENERATION]
            assert scheduler.is_generating is False
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_running_body_finishes_after_stop(self, tmp_path, clock):
        scheduler = make_scheduler(
            tmp_path, clock, **{**ONLY, "enable_cache_cleanup": True},
            cache_cleanup_interval_hours=0.00001,
        )
        events = []

        async def slow_cleanup():
            events.append("start")
            await asyncio.sleep(0.1)
            events.append("end")

        scheduler._cleanup = slow_cleanup
        await scheduler.start()
        await asyncio.sleep(0.07)
        await scheduler.stop()
        await asyncio.sleep(0.2)

        assert events == ["start", "end"]

    @pytest.mark.asyncio
    async def test_stop_with_drain_waits_for_running_body(self, tmp_path, clock):
        scheduler = make_scheduler(
            tmp_path, clock, **{**ONLY, "enable_cache_cleanup": True},
            cache_cleanup_interval_hours=0.00001,
        )
        events = []

        async def slow_cleanup():
            events.append("start")
            await asyncio.sleep(0.1)
            events.append("end")

        scheduler._cleanup = slow_cleanup
        await scheduler.start()
        await asyncio.sleep(0.07)
        await scheduler.stop(drain=True)

        assert events == ["start", "end"]
        assert scheduler._inflight == set()


# ── blocking store I/O stays off the event loop ───────────────────────────

class TestStoreOffLoop:
    @pytest.mark.asyncio
    async def test_generation_with_slow_mirror_keeps_loop_responsive(self, tmp_path, clock):
        mirror = SlowMirror(push_delay=0.5)
        scheduler = make_scheduler(tmp_path, clock, mirror=mirror)
        scheduler._store.initialize()

        result, gap = await max_loop_gap(scheduler.trigger_manual_generation("slate"))

        assert len(result.articles) == 5
        assert mirror.pushes == 1
        assert gap < 0.25

    @pytest.mark.asyncio
    async def test_start_with_slow_mirror_keeps_loop_responsive(self, tmp_path, clock):
        scheduler = make_scheduler(tmp_path, clock, mirror=SlowMirror(pull_delay=0.5), **ONLY)
        try:
            _, gap = await max_loop_gap(scheduler.start())
            assert scheduler._store.is_initialized
            assert gap < 0.25
        finally:
            await scheduler.stop()


# ── manual operations ─────────────────────────────────────────────────────

class TestManualOperations:
    @pytest.mark.asyncio
    async def test_manual_generation_re_resolves_and_stores(self, tmp_path, clock):
        stub = EndpointStub({A: {"word": "crane"}})
        scheduler = make_scheduler(tmp_path, clock, handler=stub)
        scheduler._store.initialize()
        await scheduler._resolver.resolve_today()

        result = await scheduler.trigger_manual_generation()

        assert len(stub.calls) == 2
        assert result.record.word == "CRANE"
        assert len(scheduler._store.get_by_key("crane")) == 5
        assert scheduler.jobs[JobKind.DAILY_GENERATION].last_run_at == clock.now()

    @pytest.mark.asyncio
    async def test_manual_generation_for_pinned_word(self, tmp_path, clock):
        stub = EndpointStub({A: {"word": "crane"}})
        scheduler = make_scheduler(tmp_path, clock, handler=stub)
        scheduler._store.initialize()

        result = await scheduler.trigger_manual_generation("slate")

        assert stub.calls == []
        assert result.record.source == "Manual"
        assert {i.key for i in result.articles} == {"slate"}

    @pytest.mark.asyncio
    async def test_regeneration_replaces_by_id(self, tmp_path, clock):
        scheduler = make_scheduler(tmp_path, clock)
        scheduler._store.initialize()
        await scheduler.trigger_manual_generation()
        await scheduler.trigger_manual_generation()
        assert scheduler._store.get_stats().total_articles == 5

    @pytest.mark.asyncio
    async def test_force_refresh_one_new_attempt(self, tmp_path, clock):
        stub = EndpointStub({A: {"word": "crane"}})
        scheduler = make_scheduler(tmp_path, clock, handler=stub)
        await scheduler._resolver.resolve_today()
        stub.responses[A] = {"word": "slate"}

        record = await scheduler.force_refresh()

        assert len(stub.calls) == 2
        assert record.word == "SLATE"
        assert (await scheduler._resolver.resolve_today()).word == "SLATE"

    @pytest.mark.asyncio
    async def test_generations_are_serialized(self, tmp_path, clock):
        active, peak, seen_flags = 0, 0, []
        scheduler = None

        async def handler(request):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            seen_flags.append(scheduler.health_check().issues)
            await asyncio.sleep(0.05)
            active -= 1
            return httpx.Response(200, json={"word": "crane"})

        scheduler = make_scheduler(tmp_path, clock, handler=handler)
        scheduler._store.initialize()

        await asyncio.gather(
            scheduler.trigger_manual_generation(),
            scheduler.trigger_manual_generation(),
        )

        assert peak == 1
        assert len(seen_flags) == 2
        assert all("Article generation in progress" in issues for issues in seen_flags)
        assert scheduler.is_generating is False


# ── status / health / options ─────────────────────────────────────────────

class TestHealthAndStatus:
    def test_unstarted_scheduler_is_unhealthy(self, tmp_path, clock):
        report = make_scheduler(tmp_path, clock).health_check()
        assert report.healthy is False
        assert "Content store not initialized" in report.issues
        assert "Scheduler not running" in report.issues

    @pytest.mark.asyncio
    async def test_running_scheduler_is_healthy(self, tmp_path, clock):
        scheduler = make_scheduler(tmp_path, clock)
        await scheduler.start()
        try:
            await asyncio.sleep(0.05)
            report = scheduler.health_check()
            assert report.healthy is True
            assert report.issues == []
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_fallback_answer_reported(self, tmp_path, clock):
        scheduler = make_scheduler(tmp_path, clock, handler=EndpointStub({A: 500}))
        await scheduler.start()
        try:
            await asyncio.sleep(0.05)
            assert scheduler.health_check().issues == ["Answer resolved from fallback"]
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_status(self, tmp_path, clock):
        scheduler = make_scheduler(tmp_path, clock, generation_time="00:01")
        assert scheduler.get_status().next_daily_run is None
        await scheduler.start()
        try:
            await asyncio.sleep(0.01)
            status = scheduler.get_status()
            assert status.is_running is True
            assert status.next_daily_run == datetime(2024, 3, 2, 0, 1, tzinfo=timezone.utc)
            schedules = {j.kind: j.schedule for j in status.jobs}
            assert schedules["daily_generation"] == "00:01"
            assert status.options["generation_time"] == "00:01"
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_update_options_restarts(self, tmp_path, clock):
        scheduler = make_scheduler(tmp_path, clock)
        await scheduler.start()
        try:
            old_tasks = dict(scheduler._tasks)
            await scheduler.update_options(health_check_interval_minutes=1)

            assert scheduler.is_running
            assert scheduler.jobs[JobKind.HEALTH_CHECK].interval_seconds == 60
            assert all(scheduler._tasks[k] is not t for k, t in old_tasks.items())
            assert all(t.done() for t in old_tasks.values())
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_invalid_update_leaves_scheduler_running(self, tmp_path, clock):
        scheduler = make_scheduler(tmp_path, clock, generation_time="00:01")
        await scheduler.start()
        try:
            with pytest.raises(ValueError):
                await scheduler.update_options(generation_time="99:99")
            assert scheduler.is_running
            assert scheduler.options.generation_time == "00:01"
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_update_while_stopped_stays_stopped(self, tmp_path, clock):
        scheduler = make_scheduler(tmp_path, clock)
        await scheduler.update_options(enable_health_check=False)
        assert scheduler.is_running is False
        assert scheduler.jobs[JobKind.HEALTH_CHECK].enabled is False
