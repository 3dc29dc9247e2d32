from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from vidtube.api.dependencies import (
    current_viewer_id,
    owned_video_or_404,
    parse_uuid,
    require_viewer,
    visible_video_or_404,
)
from vidtube.api.errors import APIError, not_found
from vidtube.api.pagination import empty_page, finish_page, page_params
from vidtube.storage.sqlite_store import (
    VIDEOS_BY_UPDATED,
    VIDEOS_BY_VIEW_COUNT,
    SQLiteStore,
)
from vidtube.utils.template import render_template


router = APIRouter()


class UpdateVideoRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=5000)
    category_id: str | None = None
    visibility: Literal["public", "private"] | None = None


class GenerateThumbnailRequest(BaseModel):
    prompt: str = Field(min_length=10)


def _job_response(job: Any) -> dict[str, Any]:
    return {"job_id": job.job_id, "video_id": job.video_id, "kind": job.kind, "status": job.status}


# --- Feeds


@router.get("/videos")
def list_videos(
    limit: int = Query(),
    cursor: str | None = Query(default=None),
    category_id: str | None = Query(default=None),
) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, VIDEOS_BY_UPDATED)
        page = store.list_videos_page(
            limit=limit,
            cursor=seek,
            category_id=parse_uuid(category_id, what="category_id") if category_id else None,
        )
        return finish_page(page, VIDEOS_BY_UPDATED)
    finally:
        store.close()


@router.get("/videos/trending")
def list_trending_videos(
    limit: int = Query(),
    cursor: str | None = Query(default=None),
) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, VIDEOS_BY_VIEW_COUNT)
        page = store.list_trending_videos_page(limit=limit, cursor=seek)
        return finish_page(page, VIDEOS_BY_VIEW_COUNT)
    finally:
        store.close()


@router.get("/videos/subscribed")
def list_subscribed_videos(
    request: Request,
    limit: int = Query(),
    cursor: str | None = Query(default=None),
) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, VIDEOS_BY_UPDATED)
        viewer_id = current_viewer_id(request, store)
        if viewer_id is None:
            return empty_page()
        page = store.list_subscribed_videos_page(viewer_id=viewer_id, limit=limit, cursor=seek)
        return finish_page(page, VIDEOS_BY_UPDATED)
    finally:
        store.close()


# --- Single video


@router.get("/videos/{video_id}")
def get_video(video_id: str, request: Request) -> dict[str, Any]:
    video_id = parse_uuid(video_id, what="video_id")
    store = SQLiteStore()
    try:
        viewer_id = current_viewer_id(request, store)
        visible_video_or_404(store, video_id=video_id, viewer_id=viewer_id)
        detail = store.get_video_detail(video_id=video_id, viewer_id=viewer_id)
        if detail is None:
            raise not_found("Video")
        return {"video": detail}
    finally:
        store.close()


@router.post("/videos", status_code=201)
def create_video(request: Request) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        rec = store.create_video(user_id=viewer_id)
        return {
            "video": {
                "video_id": rec.video_id,
                "user_id": rec.user_id,
                "title": rec.title,
                "visibility": rec.visibility,
                "media_status": rec.media_status,
                "created_at": rec.created_at,
                "updated_at": rec.updated_at,
            }
        }
    finally:
        store.close()


@router.patch("/videos/{video_id}")
def update_video(video_id: str, req: UpdateVideoRequest, request: Request) -> dict[str, Any]:
    video_id = parse_uuid(video_id, what="video_id")
    changes = req.model_dump(exclude_unset=True)
    if not changes:
        raise APIError(status_code=400, code="invalid_argument", message="No fields to update.")
    if changes.get("category_id") is not None:
        changes["category_id"] = parse_uuid(changes["category_id"], what="category_id")
    if "title" in changes and changes["title"] is None:
        raise APIError(status_code=400, code="invalid_argument", message="title cannot be null.")
    if "visibility" in changes and changes["visibility"] is None:
        raise APIError(status_code=400, code="invalid_argument", message="visibility cannot be null.")

    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        try:
            row = store.update_video(video_id=video_id, user_id=viewer_id, changes=changes)
        except ValueError as e:
            raise APIError(status_code=400, code="invalid_argument", message=str(e)) from e
        if row is None:
            raise not_found("Video")
        return {"video": store.get_video_detail(video_id=video_id, viewer_id=viewer_id)}
    finally:
        store.close()


@router.delete("/videos/{video_id}")
def delete_video(video_id: str, request: Request) -> dict[str, Any]:
    video_id = parse_uuid(video_id, what="video_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        if not store.delete_video(video_id=video_id, user_id=viewer_id):
            raise not_found("Video")
        return {"video_id": video_id, "deleted": True}
    finally:
        store.close()


# --- Engagement


@router.post("/videos/{video_id}/views", status_code=201)
def record_view(video_id: str, request: Request) -> dict[str, Any]:
    video_id = parse_uuid(video_id, what="video_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        visible_video_or_404(store, video_id=video_id, viewer_id=viewer_id)
        viewed_at = store.record_view(video_id=video_id, user_id=viewer_id)
        return {"video_id": video_id, "viewed_at": viewed_at}
    finally:
        store.close()


def _react(video_id: str, request: Request, reaction: str) -> dict[str, Any]:
    video_id = parse_uuid(video_id, what="video_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        visible_video_or_404(store, video_id=video_id, viewer_id=viewer_id)
        store.toggle_video_reaction(video_id=video_id, user_id=viewer_id, type=reaction)
        detail = store.get_video_detail(video_id=video_id, viewer_id=viewer_id) or {}
        return {
            "video_id": video_id,
            "viewer_reaction": detail.get("viewer_reaction"),
            "like_count": detail.get("like_count", 0),
            "dislike_count": detail.get("dislike_count", 0),
        }
    finally:
        store.close()


@router.post("/videos/{video_id}/like")
def like_video(video_id: str, request: Request) -> dict[str, Any]:
    return _react(video_id, request, "like")


@router.post("/videos/{video_id}/dislike")
def dislike_video(video_id: str, request: Request) -> dict[str, Any]:
    return _react(video_id, request, "dislike")


# --- AI workflows


def _enqueue(video_id: str, request: Request, kind: str, prompt: str | None = None) -> dict[str, Any]:
    video_id = parse_uuid(video_id, what="video_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        owned_video_or_404(store, video_id=video_id, user_id=viewer_id)
        job = store.create_workflow_job(video_id=video_id, user_id=viewer_id, kind=kind, prompt=prompt)
        return _job_response(job)
    finally:
        store.close()


@router.post("/videos/{video_id}/generate-title", status_code=202)
def generate_title(video_id: str, request: Request) -> dict[str, Any]:
    return _enqueue(video_id, request, "title")


@router.post("/videos/{video_id}/generate-description", status_code=202)
def generate_description(video_id: str, request: Request) -> dict[str, Any]:
    return _enqueue(video_id, request, "description")


@router.post("/videos/{video_id}/generate-thumbnail", status_code=202)
def generate_thumbnail(video_id: str, req: GenerateThumbnailRequest, request: Request) -> dict[str, Any]:
    return _enqueue(video_id, request, "thumbnail", prompt=req.prompt)


@router.post("/videos/{video_id}/restore-thumbnail")
def restore_thumbnail(video_id: str, request: Request) -> dict[str, Any]:
    video_id = parse_uuid(video_id, what="video_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        row = owned_video_or_404(store, video_id=video_id, user_id=viewer_id)
        playback_id = row["media_playback_id"]
        if not playback_id:
            raise APIError(status_code=400, code="invalid_argument", message="Video has no playback id yet.")
        url = render_template(
            request.app.state.config.media.thumbnail_url_template,
            {"playback_id": playback_id},
        )
        store.set_video_thumbnail(video_id=video_id, thumbnail_url=url)
        return {"video_id": video_id, "thumbnail_url": url}
    finally:
        store.close()
