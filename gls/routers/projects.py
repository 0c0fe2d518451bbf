"""Project selection view and stored context prefixes."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from gls.config import split_csv
from gls.models import ContextUpdate, PickCandidate
from gls.selection import SelectionView

projects_router = APIRouter(prefix="/api/projects", tags=["projects"])


def _get_store(request: Request):
    store = getattr(request.app.state, "store", None)
    if not store:
        raise HTTPException(status_code=503, detail="Cache store not initialized")
    return store


@projects_router.get("", response_model=list[PickCandidate])
async def list_projects(
    request: Request,
    context: Optional[str] = Query(None, description="Comma-separated full path prefixes; overrides stored contexts"),
    all_projects: bool = Query(False, alias="all", description="Ignore context prefixes"),
):
    """Cached projects in picker order, filtered by context prefixes."""
    store = _get_store(request)
    if all_projects:
        prefixes: list[str] = []
    else:
        prefixes = split_csv(context) or await store.list_context_prefixes()
    return await SelectionView(store).list(prefixes)


@projects_router.get("/contexts")
async def get_contexts(request: Request):
    store = _get_store(request)
    return {"contexts": await store.list_context_prefixes()}


@projects_router.post("/contexts")
async def add_contexts(request: Request, body: ContextUpdate):
    store = _get_store(request)
    added = await store.add_context_prefixes(body.prefixes)
    return {"added": added, "contexts": await store.list_context_prefixes()}


@projects_router.delete("/contexts")
async def clear_contexts(request: Request):
    store = _get_store(request)
    await store.clear_context_prefixes()
    return {"contexts": []}
