from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request

from vidtube.api.dependencies import current_viewer_id, parse_uuid, visible_video_or_404
from vidtube.api.pagination import finish_page, page_params
from vidtube.storage.sqlite_store import VIDEOS_BY_UPDATED, SQLiteStore


router = APIRouter()


@router.get("/search")
def search_videos(
    limit: int = Query(),
    cursor: str | None = Query(default=None),
    query: str | None = Query(default=None, max_length=200),
    category_id: str | None = Query(default=None),
) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, VIDEOS_BY_UPDATED)
        page = store.search_videos_page(
            query=(query or "").strip(),
            limit=limit,
            cursor=seek,
            category_id=parse_uuid(category_id, what="category_id") if category_id else None,
        )
        return finish_page(page, VIDEOS_BY_UPDATED)
    finally:
        store.close()


@router.get("/suggestions")
def list_suggestions(
    request: Request,
    video_id: str = Query(),
    limit: int = Query(),
    cursor: str | None = Query(default=None),
) -> dict[str, Any]:
    """Public videos from the same category as `video_id`, newest first."""
    video_id = parse_uuid(video_id, what="video_id")
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, VIDEOS_BY_UPDATED)
        source = visible_video_or_404(store, video_id=video_id, viewer_id=current_viewer_id(request, store))
        page = store.list_suggestions_page(
            video_id=video_id,
            category_id=source["category_id"],
            limit=limit,
            cursor=seek,
        )
        return finish_page(page, VIDEOS_BY_UPDATED)
    finally:
        store.close()
