"""Cache status + refresh observability API."""
from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request

from gls.db.store import META_LAST_FULL_REFRESH, META_LAST_REFRESH_STARTED
from gls.errors import GlsError
from gls.models import RefreshRequest

logger = logging.getLogger("gls.api")

cache_router = APIRouter(prefix="/api/cache", tags=["cache"])


def _get_refresh_engine(request: Request):
    engine = getattr(request.app.state, "refresh_engine", None)
    if not engine:
        raise HTTPException(status_code=503, detail="Refresh engine not initialized")
    return engine


def _get_store(request: Request):
    store = getattr(request.app.state, "store", None)
    if not store:
        raise HTTPException(status_code=503, detail="Cache store not initialized")
    return store


@cache_router.get("/status")
async def get_cache_status(request: Request):
    """Return cache freshness, scopes and live refresh operations."""
    engine = _get_refresh_engine(request)
    store = _get_store(request)
    meta = await store.all_meta()
    observability = await engine.get_observability_snapshot()
    return {
        "status": "active",
        "refresh_engine": "ready",
        "projectCount": await store.count_projects(),
        "scopes": engine.scopes,
        "throttled": await engine.is_throttled(),
        "lastRefreshStartedAt": meta.get(META_LAST_REFRESH_STARTED, ""),
        "lastFullRefreshAt": meta.get(META_LAST_FULL_REFRESH, ""),
        "contexts": await store.list_context_prefixes(),
        "operations": observability,
    }


@cache_router.get("/operations")
async def list_cache_operations(request: Request, limit: int = Query(20, ge=1, le=200)):
    """List recent refresh operations."""
    engine = _get_refresh_engine(request)
    operations = await engine.list_operations(limit=limit)
    return {"status": "ok", "count": len(operations), "items": operations}


@cache_router.get("/operations/{operation_id}")
async def get_cache_operation(request: Request, operation_id: str):
    engine = _get_refresh_engine(request)
    operation = await engine.get_operation(operation_id)
    if not operation:
        raise HTTPException(status_code=404, detail=f"Operation {operation_id} not found")
    return operation


@cache_router.post("/refresh")
async def trigger_refresh(request: Request, background_tasks: BackgroundTasks, body: RefreshRequest):
    """Run a full refresh now, ignoring the throttle window."""
    engine = _get_refresh_engine(request)

    if body.background:
        operation_id = await engine.start_operation(
            "full_refresh",
            trigger=body.trigger,
            metadata={"scopes": engine.scopes},
        )
        background_tasks.add_task(engine.run_detached, None, body.trigger, operation_id)
        return {
            "status": "ok",
            "mode": "background",
            "message": "Refresh triggered in background",
            "operationId": operation_id,
        }

    try:
        result = await engine.refresh(trigger=body.trigger)
    except GlsError as exc:
        raise HTTPException(status_code=502, detail=f"Refresh failed: {exc}") from exc
    operation = await engine.get_operation(result.operation_id)
    return {
        "status": "ok",
        "mode": "foreground",
        "operationId": result.operation_id,
        "stats": {
            "rows": result.rows,
            "pruned": result.pruned,
            "scopes": [s.scope for s in result.scopes],
            "duration_ms": result.duration_ms,
        },
        "operation": operation,
    }


@cache_router.post("/reset")
async def reset_cache(request: Request):
    """Clear projects, metadata and contexts. The next refresh is a cold one."""
    store = _get_store(request)
    try:
        await store.clear_all()
    except GlsError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    logger.info("Cache reset via API")
    return {"status": "ok", "message": "Data store cleared"}
