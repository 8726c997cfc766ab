"""Today's answer: remote endpoints raced against a timeout, with an offline fallback.

Resolution order for a date:
  1. valid cache entry (authoritative or not)
  2. remote endpoints, tried in rotation under one overall timeout
  3. deterministic offline word (words.fallback_word)

Network and parse errors never leave this module; the ``is_authoritative``
flag on the returned record is the only sign that the fallback was used.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo

import httpx

from . import config
from .cache import TTLCache
from .models import AnswerRecord, CacheStats
from .words import date_for_number, fallback_word, is_valid_word, sequence_number

logger = logging.getLogger(__name__)

_HEADERS = {
    "User-Agent": "WordHint/1.0 (daily answer resolver)",
    "Accept": "application/json",
}

FALLBACK_SOURCE = "Local Fallback"


class EndpointError(Exception):
    """A single endpoint attempt failed (transport, status or payload)."""


class AnswerResolver:
    def __init__(
        self,
        endpoints: list[str] | None = None,
        cache: TTLCache | None = None,
        *,
        api_key: str | None = None,
        endpoint_timeout: float | None = None,
        resolve_timeout: float | None = None,
        max_attempts: int | None = None,
        fallback_ttl_seconds: float | None = None,
        answer_timezone: str | None = None,
        word_length: int | None = None,
        clock: Callable[[], datetime] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.endpoints = list(config.WORDLE_ENDPOINTS if endpoints is None else endpoints)
        self.cache = cache or TTLCache(config.ANSWER_CACHE_TTL_HOURS * 3600, name="answers")
        self._api_key = config.WORDLE_API_KEY if api_key is None else api_key
        self.endpoint_timeout = (
            config.ENDPOINT_TIMEOUT_SECONDS if endpoint_timeout is None else endpoint_timeout
        )
        self.resolve_timeout = (
            config.RESOLVE_TIMEOUT_SECONDS if resolve_timeout is None else resolve_timeout
        )
        attempts = config.RESOLVE_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self.max_attempts = attempts if attempts > 0 else len(self.endpoints)
        self.fallback_ttl_seconds = (
            config.FALLBACK_CACHE_TTL_MINUTES * 60
            if fallback_ttl_seconds is None
            else fallback_ttl_seconds
        )
        self.answer_tz = ZoneInfo(answer_timezone or config.ANSWER_TIMEZONE)
        self.word_length = config.WORD_LENGTH if word_length is None else word_length
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._transport = transport

        # Rotation pointer: index of the endpoint tried first on the next attempt
        self.current_index = 0
        self.attempts: dict[str, int] = {url: 0 for url in self.endpoints}
        self.failures: dict[str, int] = {url: 0 for url in self.endpoints}
        self.last_record: AnswerRecord | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def today(self) -> date:
        return self._clock().astimezone(self.answer_tz).date()

    async def resolve_today(self, force: bool = False) -> AnswerRecord:
        return await self.resolve_for_date(self.today(), force=force)

    async def resolve_for_date(self, day: date, force: bool = False) -> AnswerRecord:
        """Return the answer for *day*; never raises for remote failures.

        *force* evicts the cached entry first so the endpoints are asked again.
        """
        key = self.cache_key(day)
        if force:
            self.cache.delete(key)
        else:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("[resolver] Cache hit for %s: %s", day, cached.word)
                self.last_record = cached
                return cached

        record: AnswerRecord | None = None
        if self.endpoints and self.max_attempts > 0:
            try:
                record = await asyncio.wait_for(
                    self._try_endpoints(day), timeout=self.resolve_timeout
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "[resolver] No endpoint answered within %.1fs for %s.",
                    self.resolve_timeout,
                    day,
                )

        if record is not None:
            self.cache.set(key, record)
        else:
            record = self.fallback(day)
            self.cache.set(key, record, ttl=self.fallback_ttl_seconds)
            logger.warning("[resolver] Using fallback word %s for %s.", record.word, day)

        self.last_record = record
        return record

    async def resolve_for_number(self, number: int, force: bool = False) -> AnswerRecord:
        """Answer for puzzle #*number*. Raises ValueError below 1."""
        return await self.resolve_for_date(date_for_number(number), force=force)

    def fallback(self, day: date) -> AnswerRecord:
        return AnswerRecord(
            word=fallback_word(day),
            sequence_number=sequence_number(day),
            date=day,
            source=FALLBACK_SOURCE,
            is_authoritative=False,
        )

    def invalidate(self, day: date | None = None) -> bool:
        return self.cache.delete(self.cache_key(day or self.today()))

    def sweep_expired(self) -> int:
        return self.cache.sweep_expired()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def status(self) -> dict[str, Any]:
        return {
            "endpoints": [
                {"url": url, "attempts": self.attempts[url], "failures": self.failures[url]}
                for url in self.endpoints
            ],
            "current_index": self.current_index,
            "cache": self.cache_stats().model_dump(),
            "last_record": self.last_record.model_dump(mode="json") if self.last_record else None,
        }

    @staticmethod
    def cache_key(day: date) -> str:
        return f"answer-{day.isoformat()}"

    # ------------------------------------------------------------------
    # Remote attempts
    # ------------------------------------------------------------------

    async def _try_endpoints(self, day: date) -> AnswerRecord | None:
        """Walk the rotation until one endpoint yields a word or the budget runs out."""
        headers = dict(_HEADERS)
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        async with httpx.AsyncClient(
            timeout=self.endpoint_timeout,
            headers=headers,
            transport=self._transport,
        ) as client:
            for _ in range(self.max_attempts):
                url = self.endpoints[self.current_index % len(self.endpoints)]
                self.attempts[url] += 1
                try:
                    record = await self._fetch(client, url, day)
                except EndpointError as exc:
                    self.failures[url] += 1
                    self.current_index = (self.current_index + 1) % len(self.endpoints)
                    logger.info("[resolver] %s failed (%s), rotating.", url, exc)
                    continue
                logger.info("[resolver] %s answered %s for %s.", url, record.word, day)
                return record

        logger.warning("[resolver] All %d attempts failed for %s.", self.max_attempts, day)
        return None

    async def _fetch(self, client: httpx.AsyncClient, url: str, day: date) -> AnswerRecord:
        target = url.replace("{date}", day.isoformat())
        try:
            resp = await client.get(target)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EndpointError(str(exc) or type(exc).__name__) from exc

        word = extract_word(data, day)
        if word is None or not is_valid_word(word, self.word_length):
            raise EndpointError(f"unusable payload: {str(data)[:120]}")

        return AnswerRecord(
            word=word.upper(),
            sequence_number=sequence_number(day),
            date=day,
            source=url,
            is_authoritative=True,
        )


def extract_word(data: Any, day: date) -> str | None:
    """Pull the answer out of the payload shapes public endpoints return.

    Accepts ``{"word": ...}``, ``{"solution": ...}`` (NYT), and either of those
    wrapped in ``{"data": {...}}``. A payload whose own date disagrees with
    *day* is rejected.
    """
    if not isinstance(data, dict):
        return None
    if isinstance(data.get("data"), dict):
        if data.get("success") is False:
            return None
        data = data["data"]

    payload_date = data.get("date") or data.get("print_date")
    if payload_date and str(payload_date)[:10] != day.isoformat():
        return None

    word = data.get("word") or data.get("solution")
    return word.strip() if isinstance(word, str) else None
