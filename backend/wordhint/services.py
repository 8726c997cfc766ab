"""Composition root: build one cache, resolver, store and scheduler per process."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import httpx

from . import config
from .cache import TTLCache
from .generator import ContentProducer, generate_articles
from .mirror import SnapshotMirror, mirror_from_env
from .resolver import AnswerResolver
from .scheduler import Scheduler, SchedulerOptions
from .store import ContentStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    answer_cache: TTLCache
    resolver: AnswerResolver
    store: ContentStore
    scheduler: Scheduler


def build_services(
    *,
    endpoints: list[str] | None = None,
    storage_path: str | Path | None = None,
    mirror: SnapshotMirror | None = None,
    producer: ContentProducer = generate_articles,
    options: SchedulerOptions | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Wire the components together. Everything not passed comes from config."""
    answer_cache = TTLCache(config.ANSWER_CACHE_TTL_HOURS * 3600, name="answers")
    resolver = AnswerResolver(endpoints, answer_cache, transport=transport)
    store = ContentStore(
        storage_path,
        mirror=mirror if mirror is not None else mirror_from_env(),
    )
    scheduler = Scheduler(resolver, store, producer, options or SchedulerOptions())
    logger.info(
        "[services] %d endpoint(s), storage at %s.", len(resolver.endpoints), store.storage_dir
    )
    return Services(answer_cache, resolver, store, scheduler)
