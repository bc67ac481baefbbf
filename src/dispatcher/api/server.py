"""FastAPI server for programmatic dispatcher access."""

from __future__ import annotations

import logging
import time
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any

import click
from fastapi import Depends, FastAPI
from fastapi.concurrency import run_in_threadpool

from dispatcher import __version__
from dispatcher.config import load_config
from dispatcher.engine.controller import DispatchController
from dispatcher.errors import ErrorKind, NoExecutorsError

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Adaptive Dispatcher API",
    version=__version__,
    description="Route tasks to executors, validate, retry and learn from outcomes",
)

_start_time = time.monotonic()


@lru_cache(maxsize=1)
def get_controller() -> DispatchController:
    """Process-wide controller built from the default config."""
    return DispatchController.from_config(load_config())


Controller = Annotated[DispatchController, Depends(get_controller)]


@app.get("/api/health")
async def health(controller: Controller) -> dict[str, Any]:
    """Health check."""
    uptime = time.monotonic() - _start_time
    return {
        "status": "degraded" if controller.store.degraded else "ok",
        "version": __version__,
        "uptime_seconds": round(uptime, 1),
        "executors": len(controller.registry),
        "history_records": len(controller.store),
    }


@app.post("/api/recommend")
async def recommend(request: dict[str, Any], controller: Controller) -> dict[str, Any]:
    """Preview the routing decision for a task."""
    task = request.get("task", "")
    if not task:
        return {"error": "task is required"}
    try:
        rec = controller.recommend(task)
    except NoExecutorsError as e:
        return {"error": str(e), "error_kind": ErrorKind.NO_EXECUTORS.value}
    return rec.to_dict()


@app.post("/api/run")
async def run(request: dict[str, Any], controller: Controller) -> dict[str, Any]:
    """Dispatch a task and wait for the result."""
    task = request.get("task", "")
    if not task:
        return {"error": "task is required"}
    timeout = request.get("timeout")
    result = await run_in_threadpool(
        controller.run, task, None, float(timeout) if timeout is not None else None
    )
    return result.to_dict()


@app.get("/api/stats")
async def stats(controller: Controller) -> dict[str, Any]:
    """Aggregate history statistics."""
    return controller.get_history_stats()


@app.get("/api/performance")
async def performance(controller: Controller) -> dict[str, Any]:
    """Per-executor performance counters."""
    return {"executors": controller.get_performance()}


@app.get("/api/history")
async def history(controller: Controller, limit: int = 20) -> dict[str, Any]:
    """Most recent dispatch attempts, newest first."""
    records = [r.to_dict() for r in controller.store.recent(limit)]
    return {"records": records, "count": len(records), "limit": limit}


@app.post("/api/similar")
async def similar(request: dict[str, Any], controller: Controller) -> dict[str, Any]:
    """Executors that did best on tasks similar to the given one."""
    task = request.get("task", "")
    if not task:
        return {"error": "task is required"}
    ranked = controller.best_for_similar(task, top_n=int(request.get("top", 3)))
    return {"executors": ranked, "count": len(ranked)}


@app.post("/api/flush")
async def flush(controller: Controller) -> dict[str, Any]:
    """Write history records held in memory while the store was unavailable."""
    return await run_in_threadpool(controller.flush)


@click.command()
@click.option("--port", default=3848, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="JSON config file",
)
def main(port: int, host: str, config_path: Path | None) -> None:
    """Start the Dispatcher API server."""
    import uvicorn

    from dispatcher.logging_utils import configure_logging

    configure_logging()
    controller = DispatchController.from_config(load_config(config_path))
    app.dependency_overrides[get_controller] = lambda: controller
    logger.info("Serving %d executor(s) on %s:%d", len(controller.registry), host, port)
    uvicorn.run(app, host=host, port=port)
