from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request

from vidtube.api.dependencies import current_viewer_id, parse_uuid
from vidtube.api.errors import not_found
from vidtube.api.pagination import finish_page, page_params
from vidtube.storage.sqlite_store import VIDEOS_BY_UPDATED, SQLiteStore


router = APIRouter()


@router.get("/users/{user_id}")
def get_user(user_id: str, request: Request) -> dict[str, Any]:
    user_id = parse_uuid(user_id, what="user_id")
    store = SQLiteStore()
    try:
        detail = store.get_user_detail(user_id=user_id, viewer_id=current_viewer_id(request, store))
        if detail is None:
            raise not_found("User")
        return {"user": detail}
    finally:
        store.close()


@router.get("/users/{user_id}/videos")
def list_user_videos(
    user_id: str,
    limit: int = Query(),
    cursor: str | None = Query(default=None),
) -> dict[str, Any]:
    user_id = parse_uuid(user_id, what="user_id")
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, VIDEOS_BY_UPDATED)
        if store.get_user(user_id=user_id) is None:
            raise not_found("User")
        page = store.list_user_videos_page(user_id=user_id, limit=limit, cursor=seek)
        return finish_page(page, VIDEOS_BY_UPDATED)
    finally:
        store.close()
