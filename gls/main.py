"""gls FastAPI backend: cache status, refresh control, and the project selection view."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from gls.config import load_settings
from gls.db.connection import close_connection, open_connection
from gls.db.refresh_engine import RefreshEngine
from gls.db.sqlite_migrations import run_migrations
from gls.db.store import CacheStore
from gls.observability import initialize as initialize_observability, shutdown as shutdown_observability
from gls.remote.client import GitLabClient
from gls.routers.cache import cache_router
from gls.routers.projects import projects_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("gls.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("gls backend starting up")
    settings = load_settings()
    app.state.settings = settings
    initialize_observability(settings, app)

    # 1. Open the cache and migrate
    db = await open_connection(settings.db_path)
    await run_migrations(db)
    store = CacheStore(db)
    app.state.store = store

    # 2. Refresh engine over the configured scopes
    client = GitLabClient.from_settings(settings)
    engine = RefreshEngine.from_settings(settings, store, client)
    app.state.refresh_engine = engine

    # 3. Startup refresh never blocks, even on a cold cache
    decision = await engine.begin(cold_in_background=True)
    app.state.startup_refresh = decision.handle
    logger.info("Startup refresh decision: %s", decision.state)

    yield

    logger.info("gls backend shutting down")
    if decision.handle is not None:
        await decision.handle.cancel()
    await client.aclose()
    shutdown_observability(app)
    await close_connection(db)
    app.state.store = None


app = FastAPI(
    title="gls API",
    description="Local GitLab project cache with stale-while-revalidate refresh",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(cache_router)
app.include_router(projects_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "db": "connected" if getattr(app.state, "store", None) is not None else "disconnected",
    }
