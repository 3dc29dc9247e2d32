from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request

from vidtube.api.dependencies import current_viewer_id, parse_uuid, require_viewer
from vidtube.api.errors import APIError, not_found
from vidtube.api.pagination import empty_page, finish_page, page_params
from vidtube.storage.sqlite_store import SUBSCRIPTIONS_BY_UPDATED, SQLiteStore


router = APIRouter()


@router.get("/subscriptions")
def list_subscriptions(
    request: Request,
    limit: int = Query(),
    cursor: str | None = Query(default=None),
) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, SUBSCRIPTIONS_BY_UPDATED)
        viewer_id = current_viewer_id(request, store)
        if viewer_id is None:
            return empty_page()
        page = store.list_subscriptions_page(viewer_id=viewer_id, limit=limit, cursor=seek)
        return finish_page(page, SUBSCRIPTIONS_BY_UPDATED)
    finally:
        store.close()


@router.post("/subscriptions/{creator_id}", status_code=201)
def subscribe(creator_id: str, request: Request) -> dict[str, Any]:
    creator_id = parse_uuid(creator_id, what="creator_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        if viewer_id == creator_id:
            raise APIError(status_code=400, code="invalid_argument", message="Cannot subscribe to yourself.")
        if store.get_user(user_id=creator_id) is None:
            raise not_found("User")
        return {"subscription": store.create_subscription(viewer_id=viewer_id, creator_id=creator_id)}
    finally:
        store.close()


@router.delete("/subscriptions/{creator_id}")
def unsubscribe(creator_id: str, request: Request) -> dict[str, Any]:
    creator_id = parse_uuid(creator_id, what="creator_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        if viewer_id == creator_id:
            raise APIError(status_code=400, code="invalid_argument", message="Cannot unsubscribe from yourself.")
        if not store.delete_subscription(viewer_id=viewer_id, creator_id=creator_id):
            raise not_found("Subscription")
        return {"creator_id": creator_id, "deleted": True}
    finally:
        store.close()
