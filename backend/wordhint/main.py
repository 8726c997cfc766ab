import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request

from . import config
from .logging_config import setup_logging
from .models import (
    AdminRequest,
    AdminResponse,
    AnswerRecord,
    ContentItem,
    StoreStats,
)
from .services import Services, build_services

logger = logging.getLogger(__name__)


def create_app(
    services: Services | None = None,
    start_scheduler: bool | None = None,
    admin_mode: bool | None = None,
) -> FastAPI:
    """Build the API. *services* defaults to a fresh set built from config."""
    start_scheduler = config.SCHEDULER_ENABLED if start_scheduler is None else start_scheduler
    admin_mode = config.ADMIN_MODE if admin_mode is None else admin_mode

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services is None:
            setup_logging()
        svc = services or build_services()
        app.state.services = svc

        if not svc.store.is_initialized:
            await asyncio.to_thread(svc.store.initialize)
        if start_scheduler:
            await svc.scheduler.start()

        yield

        await svc.scheduler.stop(drain=True)

    app = FastAPI(title="wordhint", lifespan=lifespan)

    def _svc(request: Request) -> Services:
        return request.app.state.services

    # ---------------------------------------------------------------------------
    # Public routes
    # ---------------------------------------------------------------------------

    @app.get("/api/today", response_model=AnswerRecord)
    async def get_today(request: Request):
        return await _svc(request).resolver.resolve_today()

    @app.get("/api/answers/{number}", response_model=AnswerRecord)
    async def get_answer_by_number(request: Request, number: int):
        try:
            return await _svc(request).resolver.resolve_for_number(number)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    @app.get("/api/articles", response_model=list[ContentItem])
    def list_articles(
        request: Request,
        word: str | None = None,
        category: str | None = None,
        difficulty: str | None = None,
        tag: str | None = None,
        q: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ):
        store = _svc(request).store
        if word:
            return store.get_by_key(word)
        if category:
            return store.get_by_category(category)
        if difficulty:
            return store.get_by_difficulty(difficulty)
        if tag:
            return store.get_by_tag(tag)
        if q:
            return store.search(q)
        return store.get_all_sorted(limit=limit, offset=offset)

    @app.get("/api/articles/recent", response_model=list[ContentItem])
    def recent_articles(request: Request, limit: int = 10):
        return _svc(request).store.get_recent(limit)

    @app.get("/api/articles/popular", response_model=list[ContentItem])
    def popular_articles(request: Request, limit: int = 10):
        return _svc(request).store.get_popular(limit)

    @app.get("/api/articles/{item_id}", response_model=ContentItem)
    def get_article(request: Request, item_id: str):
        item = _svc(request).store.get_by_id(item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Article not found")
        return item

    @app.post("/api/articles/{item_id}/view", response_model=ContentItem)
    def view_article(request: Request, item_id: str):
        item = _svc(request).store.increment_view(item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Article not found")
        return item

    @app.post("/api/articles/{item_id}/like", response_model=ContentItem)
    def like_article(request: Request, item_id: str):
        item = _svc(request).store.increment_like(item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Article not found")
        return item

    @app.get("/api/stats", response_model=StoreStats)
    def get_stats(request: Request):
        return _svc(request).store.get_stats()

    # ---------------------------------------------------------------------------
    # Admin routes
    # ---------------------------------------------------------------------------

    @app.get("/api/admin")
    def admin_status(request: Request):
        svc = _svc(request)
        return {
            "articles": svc.store.get_stats().model_dump(),
            "resolver": svc.resolver.status(),
            "scheduler": svc.scheduler.get_status().model_dump(mode="json"),
            "health": svc.scheduler.health_check().model_dump(mode="json"),
        }

    @app.post("/api/admin", response_model=AdminResponse)
    async def admin_action(request: Request, body: AdminRequest):
        if not admin_mode:
            raise HTTPException(status_code=403, detail="Admin actions are disabled")
        svc = _svc(request)
        scheduler = svc.scheduler

        if body.action == "start_scheduler":
            await scheduler.start()
            return AdminResponse(success=True, message="Scheduler started")

        if body.action == "stop_scheduler":
            await scheduler.stop()
            return AdminResponse(success=True, message="Scheduler stopped")

        if body.action == "generate_articles":
            if not body.word or not body.word.strip():
                raise HTTPException(status_code=400, detail="word is required")
            result = await scheduler.trigger_manual_generation(body.word)
            return AdminResponse(
                success=True,
                message=f"Generated {len(result.articles)} articles for {result.record.word}",
                articles=result.articles,
            )

        if body.action == "force_today_generation":
            result = await scheduler.trigger_manual_generation()
            return AdminResponse(
                success=True,
                message=f"Generated {len(result.articles)} articles for {result.record.word}",
                articles=result.articles,
            )

        if body.action == "force_refresh":
            record = await scheduler.force_refresh()
            return AdminResponse(
                success=True,
                message=f"Resolved {record.word} from {record.source}",
            )

        if body.action == "clear_caches":
            svc.answer_cache.clear()
            await asyncio.to_thread(svc.store.clear_all)
            return AdminResponse(success=True, message="All caches cleared")

        if body.action == "cleanup_caches":
            removed = svc.answer_cache.sweep_expired()
            await asyncio.to_thread(svc.store.expire_if_stale)
            return AdminResponse(success=True, message=f"Removed {removed} expired entries")

        # update_scheduler_options
        if not body.scheduler_options:
            raise HTTPException(status_code=400, detail="scheduler_options are required")
        try:
            await scheduler.update_options(**body.scheduler_options)
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return AdminResponse(success=True, message="Scheduler options updated")

    return app


app = create_app()
