"""API route definitions for ScreenSense."""

from __future__ import annotations

from typing import Any, Optional

import pydantic
from fastapi import APIRouter, Body, Depends, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..core.context import AppContext
from ..core.exceptions import ValidationError
from ..core.logger import get_logger
from ..index.query import HistoryRequest, SearchRequest

log = get_logger("api")

# Create router instances
elements_router = APIRouter()
index_router = APIRouter()
watcher_router = APIRouter()


def get_context(request: Request) -> AppContext:
    """Return the application context attached by :func:`create_app`."""
    return request.app.state.context


# Pydantic models for request/response
class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class CleanupRequest(_CamelModel):
    """Request model for retention cleanup."""
    older_than_ms: Optional[int] = Field(default=None, ge=0)


class WatcherConfigUpdate(_CamelModel):
    """Partial watcher configuration."""
    fps: Optional[float] = None
    enabled: Optional[bool] = None
    capture_on_change: Optional[bool] = None
    fast_mode: Optional[bool] = None
    max_retries: Optional[int] = None
    retry_delay: Optional[float] = None
    stage_timeout: Optional[float] = None


class ElementResult(BaseModel):
    """One ranked element."""
    id: str
    type: str
    text: str
    bbox: list[int]
    description: str
    score: float


class SearchResponse(BaseModel):
    """Response model for element search."""
    success: bool = True
    query: str
    results: list[ElementResult]
    count: int


def _parse(model: type[BaseModel], payload: Any) -> Any:
    try:
        return model.model_validate(payload or {})
    except pydantic.ValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__}",
            details={"errors": [str(error.get("msg")) for error in exc.errors()]},
        ) from exc


# Element search routes
@elements_router.post("/search", response_model=SearchResponse)
async def search_elements(payload: Any = Body(default=None), context: AppContext = Depends(get_context)):
    """Hybrid search over indexed UI elements."""
    request = SearchRequest.parse(payload)
    results = await context.semantic_index.search(request)
    return SearchResponse(
        query=request.query,
        results=[ElementResult(**result.to_dict()) for result in results],
        count=len(results),
    )


@elements_router.post("/history")
async def search_history(payload: Any = Body(default=None), context: AppContext = Depends(get_context)):
    """Rank past screen states against a query within a time range."""
    request = HistoryRequest.parse(payload)
    screens = await context.semantic_index.search_history(request.query, request.time_range, request.k)
    return {
        "success": True,
        "query": request.query,
        "results": [screen.to_dict() for screen in screens],
        "count": len(screens),
    }


@elements_router.get("/{node_id}")
async def get_element(node_id: str, context: AppContext = Depends(get_context)):
    """Fetch one indexed element by id."""
    node = await context.semantic_index.get_node(node_id)
    if node is None:
        return {"success": False, "error": {"kind": "not_found", "message": f"No element {node_id}"}}
    return {"success": True, "element": node.to_dict()}


# Index maintenance routes
@index_router.get("/stats")
async def get_index_stats(context: AppContext = Depends(get_context)):
    """Row counts and database size."""
    stats = await context.semantic_index.get_stats()
    return {"success": True, "stats": stats, "cleanup": context.cleanup.get_status()}


@index_router.post("/cleanup")
async def run_cleanup(payload: Any = Body(default=None), context: AppContext = Depends(get_context)):
    """Delete screen states older than ``olderThanMs`` (default: retention period)."""
    request = _parse(CleanupRequest, payload)
    deleted = await context.semantic_index.cleanup(request.older_than_ms)
    log.info(f"Manual cleanup removed {deleted} screen states")
    return {"success": True, "deleted": deleted}


@index_router.delete("")
async def clear_index(context: AppContext = Depends(get_context)):
    """Remove every indexed screen state."""
    removed = await context.semantic_index.clear()
    return {"success": True, "deleted": removed}


# Watcher control routes
@watcher_router.post("/start")
async def start_watcher(context: AppContext = Depends(get_context)):
    return await context.watcher.start()


@watcher_router.post("/stop")
async def stop_watcher(context: AppContext = Depends(get_context)):
    return await context.watcher.stop()


@watcher_router.post("/pause")
async def pause_watcher(context: AppContext = Depends(get_context)):
    return context.watcher.pause()


@watcher_router.post("/resume")
async def resume_watcher(context: AppContext = Depends(get_context)):
    return context.watcher.resume()


@watcher_router.post("/capture")
async def capture_now(context: AppContext = Depends(get_context)):
    """Force one capture, bypassing pause and change detection."""
    return await context.watcher.capture_now()


@watcher_router.post("/config")
async def update_watcher_config(payload: Any = Body(default=None), context: AppContext = Depends(get_context)):
    update = _parse(WatcherConfigUpdate, payload)
    return context.watcher.update_config(update.model_dump(exclude_none=True))


@watcher_router.get("/status")
async def get_watcher_status(context: AppContext = Depends(get_context)):
    return {"success": True, **context.watcher.get_status()}
