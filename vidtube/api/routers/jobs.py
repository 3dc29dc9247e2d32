from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request

from vidtube.api.dependencies import current_viewer_id, parse_uuid
from vidtube.api.errors import not_found, unauthenticated
from vidtube.api.pagination import finish_page, page_params
from vidtube.storage.sqlite_store import JOB_EVENTS_BY_CREATED, SQLiteStore


router = APIRouter()


def _owned_job_or_404(store: SQLiteStore, request: Request, job_id: str) -> Any:
    viewer_id = current_viewer_id(request, store)
    if viewer_id is None:
        raise unauthenticated()
    row = store.get_workflow_job(job_id=job_id)
    if row is None or str(row["user_id"]) != viewer_id:
        raise not_found("Job")
    return row


@router.get("/jobs/{job_id}")
def get_job(job_id: str, request: Request) -> dict[str, Any]:
    job_id = parse_uuid(job_id, what="job_id")
    store = SQLiteStore()
    try:
        row = _owned_job_or_404(store, request, job_id)
        return {
            "job": {
                "job_id": row["job_id"],
                "video_id": row["video_id"],
                "kind": row["kind"],
                "status": row["status"],
                "error": row["error"],
                "created_at": float(row["created_at"]),
                "started_at": float(row["started_at"]) if row["started_at"] is not None else None,
                "ended_at": float(row["ended_at"]) if row["ended_at"] is not None else None,
            }
        }
    finally:
        store.close()


@router.get("/jobs/{job_id}/events")
def list_job_events(
    job_id: str,
    request: Request,
    limit: int = Query(),
    cursor: str | None = Query(default=None),
) -> dict[str, Any]:
    """Job trace in chronological order (oldest first)."""
    job_id = parse_uuid(job_id, what="job_id")
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, JOB_EVENTS_BY_CREATED)
        _owned_job_or_404(store, request, job_id)
        page = store.list_job_events_page(job_id=job_id, limit=limit, cursor=seek)
        return finish_page(page, JOB_EVENTS_BY_CREATED)
    finally:
        store.close()
