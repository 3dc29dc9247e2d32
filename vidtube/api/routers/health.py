from __future__ import annotations

import logging
import os
import sqlite3
import time
from typing import Any

from fastapi import APIRouter, Request

from vidtube.api.errors import APIError
from vidtube.storage.feed_query import MAX_PAGE_LIMIT, MIN_PAGE_LIMIT
from vidtube.storage.sqlite_store import SCHEMA_VERSION, SQLiteStore


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/healthz")
def healthz() -> dict[str, Any]:
    """Liveness plus a real round trip to the store; 503 when the database is unusable."""
    try:
        store = SQLiteStore()
    except (sqlite3.Error, OSError, RuntimeError) as e:
        logger.warning("Health check could not open the store: %s", e)
        raise APIError(status_code=503, code="unavailable", message="Database unavailable.") from e
    try:
        return {
            "status": "ok",
            "schema_version": store.schema_version(),
            "catalog": store.count_catalog(),
        }
    except sqlite3.Error as e:
        logger.warning("Health check query failed: %s", e)
        raise APIError(status_code=503, code="unavailable", message="Database unavailable.") from e
    finally:
        store.close()


@router.get("/version")
def version(request: Request) -> dict[str, Any]:
    workflows = request.app.state.config.workflows
    return {
        "service": "vidtube",
        "api": "v1",
        "schema_version": SCHEMA_VERSION,
        "paging": {"min_limit": MIN_PAGE_LIMIT, "max_limit": MAX_PAGE_LIMIT},
        "models": {
            "chat": os.getenv("LLM_MODEL") or None,
            "image": workflows.image_model,
        },
    }


@router.get("/system/worker")
def system_worker(request: Request) -> dict[str, Any]:
    worker = getattr(request.app.state, "workflow_worker", None)
    worker_snapshot: dict[str, Any] = {"enabled": worker is not None, "running": False}
    if worker is not None:
        worker_snapshot.update(worker.status_snapshot())

    limiter = request.app.state.rate_limiter
    store = SQLiteStore()
    try:
        return {
            "ts": time.time(),
            "worker": worker_snapshot,
            "queue": {"jobs_by_status": store.count_jobs_by_status()},
            "rate_limit": {
                "max_requests": limiter.max_requests,
                "window_s": limiter.window_s,
                "tracked_viewers": len(limiter),
            },
            "startup": {
                "reconciled_running_jobs": getattr(request.app.state, "reconciled_running_jobs", 0),
            },
        }
    finally:
        store.close()
