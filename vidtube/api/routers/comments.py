from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from vidtube.api.dependencies import current_viewer_id, parse_uuid, require_viewer, visible_video_or_404
from vidtube.api.errors import not_found
from vidtube.api.pagination import finish_page, page_params
from vidtube.storage.sqlite_store import COMMENTS_BY_UPDATED, SQLiteStore


router = APIRouter()


class CreateCommentRequest(BaseModel):
    video_id: str
    value: str = Field(min_length=1, max_length=5000)


@router.get("/comments")
def list_comments(
    request: Request,
    video_id: str = Query(),
    limit: int = Query(),
    cursor: str | None = Query(default=None),
) -> dict[str, Any]:
    video_id = parse_uuid(video_id, what="video_id")
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, COMMENTS_BY_UPDATED)
        viewer_id = current_viewer_id(request, store)
        visible_video_or_404(store, video_id=video_id, viewer_id=viewer_id)
        page = store.list_comments_page(video_id=video_id, viewer_id=viewer_id, limit=limit, cursor=seek)
        page = finish_page(page, COMMENTS_BY_UPDATED)
        page["total_count"] = store.count_comments(video_id=video_id)
        return page
    finally:
        store.close()


@router.post("/comments", status_code=201)
def create_comment(req: CreateCommentRequest, request: Request) -> dict[str, Any]:
    video_id = parse_uuid(req.video_id, what="video_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        visible_video_or_404(store, video_id=video_id, viewer_id=viewer_id)
        rec = store.create_comment(video_id=video_id, user_id=viewer_id, value=req.value.strip())
        return {
            "comment": {
                "comment_id": rec.comment_id,
                "video_id": rec.video_id,
                "user_id": rec.user_id,
                "value": rec.value,
                "created_at": rec.created_at,
            }
        }
    finally:
        store.close()


@router.delete("/comments/{comment_id}")
def delete_comment(comment_id: str, request: Request) -> dict[str, Any]:
    comment_id = parse_uuid(comment_id, what="comment_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        if not store.delete_comment(comment_id=comment_id, user_id=viewer_id):
            raise not_found("Comment")
        return {"comment_id": comment_id, "deleted": True}
    finally:
        store.close()


def _react(comment_id: str, request: Request, reaction: str) -> dict[str, Any]:
    comment_id = parse_uuid(comment_id, what="comment_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        if store.get_comment(comment_id=comment_id) is None:
            raise not_found("Comment")
        current = store.toggle_comment_reaction(comment_id=comment_id, user_id=viewer_id, type=reaction)
        return {"comment_id": comment_id, "viewer_reaction": current}
    finally:
        store.close()


@router.post("/comments/{comment_id}/like")
def like_comment(comment_id: str, request: Request) -> dict[str, Any]:
    return _react(comment_id, request, "like")


@router.post("/comments/{comment_id}/dislike")
def dislike_comment(comment_id: str, request: Request) -> dict[str, Any]:
    return _react(comment_id, request, "dislike")
