"""
Pool Fixtures API - Main FastAPI Application
Fixtures scraped from the origin site, served through a freshness-bounded cache
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import Settings, settings
from fixtures_service.cache import CacheManager
from fixtures_service.db import create_engine_from_settings
from fixtures_service.schemas import ErrorResponse, FixturesResponse, WeekOption
from fixtures_service.scraper import BrowserRenderer, create_render_breaker
from fixtures_service.store import CacheStore

logger = logging.getLogger("api")

APP_VERSION = "v1.0.0"
APP_NAME = "Pool Fixtures API"


def build_cache_manager(config: Settings, store: CacheStore) -> CacheManager:
    """Wire the renderer and store into the cache manager."""
    breaker = create_render_breaker(
        fail_max=config.breaker_fail_max,
        reset_timeout=config.breaker_reset_timeout,
    )
    renderer = BrowserRenderer(
        navigation_timeout_ms=config.navigation_timeout_ms,
        selector_timeout_ms=config.selector_timeout_ms,
        max_attempts=config.render_max_attempts,
        breaker=breaker,
    )
    return CacheManager(
        store=store,
        renderer=renderer,
        origin_base_url=config.origin_base_url,
        current_ttl_seconds=config.current_ttl_seconds,
        wait_selector=config.wait_selector,
        coalesce_timeout=config.coalesce_timeout,
        serve_stale_on_error=config.serve_stale_on_error,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the shared connection pool for the life of the process."""
    logging.basicConfig(level=settings.log_level.upper())
    engine = create_engine_from_settings(settings)
    store = CacheStore(engine)
    await store.init_schema()
    app.state.cache_manager = build_cache_manager(settings, store)
    logger.info(f"{APP_NAME} {APP_VERSION} ready")
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Database engine disposed")


app = FastAPI(
    title=APP_NAME,
    description="Pool fixtures scraped live and cached",
    version=APP_VERSION,
    lifespan=lifespan,
)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])


def get_cache_manager(request: Request) -> CacheManager:
    """FastAPI dependency returning the process-wide cache manager."""
    return request.app.state.cache_manager


def _error(message: str) -> JSONResponse:
    return JSONResponse(status_code=500, content=ErrorResponse(error=message).model_dump())


@app.get("/api/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "time": datetime.now(timezone.utc).isoformat()}


@app.get("/cache/stats")
async def cache_stats(manager: CacheManager = Depends(get_cache_manager)):
    """Get cache statistics."""
    return manager.get_stats()


@app.get("/api/fixtures", response_model=FixturesResponse)
async def latest_fixtures(manager: CacheManager = Depends(get_cache_manager)):
    """Current week's fixtures (cached for up to 10 minutes)."""
    try:
        result = await manager.fetch_current()
    except Exception:
        logger.exception("Failed to fetch latest fixtures")
        return _error("Failed to fetch latest fixtures")
    return result.to_dict()


@app.get("/api/fixtures/{date}", response_model=FixturesResponse)
async def fixtures_by_date(date: str, manager: CacheManager = Depends(get_cache_manager)):
    """Fixtures for a past week (cached permanently after the first fetch)."""
    try:
        result = await manager.fetch_by_date(date)
    except Exception:
        logger.exception(f"Failed to fetch fixtures for {date}")
        return _error("Failed to fetch fixtures by date")
    return result.to_dict()


@app.get("/api/weeks", response_model=list[WeekOption])
async def available_weeks(manager: CacheManager = Depends(get_cache_manager)):
    """
    Weeks listed on the origin site.

    An empty list is returned both when the origin lists no weeks and when
    discovery failed; the X-Discovery-Status header (ok, empty, failed)
    tells them apart.
    """
    try:
        discovery = await manager.list_available_weeks()
    except Exception:
        logger.exception("/api/weeks error")
        return _error("Internal server error")

    return JSONResponse(
        content=[week.model_dump() for week in discovery.weeks],
        headers={"X-Discovery-Status": discovery.status.value},
    )
