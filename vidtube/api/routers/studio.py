from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request

from vidtube.api.dependencies import current_viewer_id, parse_uuid
from vidtube.api.errors import not_found, unauthenticated
from vidtube.api.pagination import empty_page, finish_page, page_params
from vidtube.storage.sqlite_store import VIDEOS_BY_UPDATED, SQLiteStore


router = APIRouter()


@router.get("/studio/videos")
def list_studio_videos(
    request: Request,
    limit: int = Query(),
    cursor: str | None = Query(default=None),
) -> dict[str, Any]:
    """All of the viewer's own uploads, private drafts included."""
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, VIDEOS_BY_UPDATED)
        viewer_id = current_viewer_id(request, store)
        if viewer_id is None:
            return empty_page()
        page = store.list_studio_videos_page(user_id=viewer_id, limit=limit, cursor=seek)
        return finish_page(page, VIDEOS_BY_UPDATED)
    finally:
        store.close()


@router.get("/studio/videos/{video_id}")
def get_studio_video(video_id: str, request: Request) -> dict[str, Any]:
    video_id = parse_uuid(video_id, what="video_id")
    store = SQLiteStore()
    try:
        viewer_id = current_viewer_id(request, store)
        if viewer_id is None:
            raise unauthenticated()
        if store.get_owned_video(video_id=video_id, user_id=viewer_id) is None:
            raise not_found("Video")
        return {"video": store.get_video_detail(video_id=video_id, viewer_id=viewer_id)}
    finally:
        store.close()
