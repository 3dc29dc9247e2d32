from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from vidtube.api.dependencies import current_viewer_id, parse_uuid, require_viewer, visible_video_or_404
from vidtube.api.errors import not_found, unauthenticated
from vidtube.api.pagination import empty_page, finish_page, page_params
from vidtube.storage.sqlite_store import (
    HISTORY_BY_VIEWED,
    LIKED_BY_LIKED,
    PLAYLIST_VIDEOS_BY_ADDED,
    PLAYLISTS_BY_UPDATED,
    SQLiteStore,
)


router = APIRouter()


class CreatePlaylistRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)


def _owned_playlist_or_404(store: SQLiteStore, *, playlist_id: str, viewer_id: str) -> dict[str, Any]:
    playlist = store.get_playlist(playlist_id=playlist_id)
    if playlist is None or playlist["user_id"] != viewer_id:
        raise not_found("Playlist")
    return playlist


# --- Viewer feeds


@router.get("/playlists")
def list_playlists(
    request: Request,
    limit: int = Query(),
    cursor: str | None = Query(default=None),
) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, PLAYLISTS_BY_UPDATED)
        viewer_id = current_viewer_id(request, store)
        if viewer_id is None:
            return empty_page()
        page = store.list_playlists_page(user_id=viewer_id, limit=limit, cursor=seek)
        return finish_page(page, PLAYLISTS_BY_UPDATED)
    finally:
        store.close()


@router.get("/playlists/history")
def list_history(
    request: Request,
    limit: int = Query(),
    cursor: str | None = Query(default=None),
) -> dict[str, Any]:
    """Videos the viewer watched, most recently viewed first."""
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, HISTORY_BY_VIEWED)
        viewer_id = current_viewer_id(request, store)
        if viewer_id is None:
            return empty_page()
        page = store.list_history_page(viewer_id=viewer_id, limit=limit, cursor=seek)
        return finish_page(page, HISTORY_BY_VIEWED)
    finally:
        store.close()


@router.get("/playlists/liked")
def list_liked(
    request: Request,
    limit: int = Query(),
    cursor: str | None = Query(default=None),
) -> dict[str, Any]:
    """Videos the viewer liked, most recently liked first."""
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, LIKED_BY_LIKED)
        viewer_id = current_viewer_id(request, store)
        if viewer_id is None:
            return empty_page()
        page = store.list_liked_page(viewer_id=viewer_id, limit=limit, cursor=seek)
        return finish_page(page, LIKED_BY_LIKED)
    finally:
        store.close()


# --- Playlist CRUD


@router.post("/playlists", status_code=201)
def create_playlist(req: CreatePlaylistRequest, request: Request) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        rec = store.create_playlist(user_id=viewer_id, name=req.name.strip(), description=req.description)
        return {"playlist": store.get_playlist(playlist_id=rec.playlist_id)}
    finally:
        store.close()


@router.get("/playlists/{playlist_id}")
def get_playlist(playlist_id: str, request: Request) -> dict[str, Any]:
    playlist_id = parse_uuid(playlist_id, what="playlist_id")
    store = SQLiteStore()
    try:
        viewer_id = current_viewer_id(request, store)
        if viewer_id is None:
            raise unauthenticated()
        return {"playlist": _owned_playlist_or_404(store, playlist_id=playlist_id, viewer_id=viewer_id)}
    finally:
        store.close()


@router.delete("/playlists/{playlist_id}")
def delete_playlist(playlist_id: str, request: Request) -> dict[str, Any]:
    playlist_id = parse_uuid(playlist_id, what="playlist_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        if not store.delete_playlist(playlist_id=playlist_id, user_id=viewer_id):
            raise not_found("Playlist")
        return {"playlist_id": playlist_id, "deleted": True}
    finally:
        store.close()


# --- Playlist membership


@router.get("/playlists/{playlist_id}/videos")
def list_playlist_videos(
    playlist_id: str,
    request: Request,
    limit: int = Query(),
    cursor: str | None = Query(default=None),
) -> dict[str, Any]:
    playlist_id = parse_uuid(playlist_id, what="playlist_id")
    store = SQLiteStore()
    try:
        limit, seek = page_params(limit, cursor, PLAYLIST_VIDEOS_BY_ADDED)
        viewer_id = current_viewer_id(request, store)
        if viewer_id is None:
            return empty_page()
        _owned_playlist_or_404(store, playlist_id=playlist_id, viewer_id=viewer_id)
        page = store.list_playlist_videos_page(
            playlist_id=playlist_id, viewer_id=viewer_id, limit=limit, cursor=seek
        )
        return finish_page(page, PLAYLIST_VIDEOS_BY_ADDED)
    finally:
        store.close()


@router.post("/playlists/{playlist_id}/videos/{video_id}", status_code=201)
def add_playlist_video(playlist_id: str, video_id: str, request: Request) -> dict[str, Any]:
    playlist_id = parse_uuid(playlist_id, what="playlist_id")
    video_id = parse_uuid(video_id, what="video_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        _owned_playlist_or_404(store, playlist_id=playlist_id, viewer_id=viewer_id)
        visible_video_or_404(store, video_id=video_id, viewer_id=viewer_id)
        added_at = store.add_video_to_playlist(playlist_id=playlist_id, video_id=video_id)
        return {"playlist_id": playlist_id, "video_id": video_id, "added_at": added_at}
    finally:
        store.close()


@router.delete("/playlists/{playlist_id}/videos/{video_id}")
def remove_playlist_video(playlist_id: str, video_id: str, request: Request) -> dict[str, Any]:
    playlist_id = parse_uuid(playlist_id, what="playlist_id")
    video_id = parse_uuid(video_id, what="video_id")
    store = SQLiteStore()
    try:
        viewer_id = require_viewer(request, store)
        _owned_playlist_or_404(store, playlist_id=playlist_id, viewer_id=viewer_id)
        if not store.remove_video_from_playlist(playlist_id=playlist_id, video_id=video_id):
            raise not_found("Playlist video")
        return {"playlist_id": playlist_id, "video_id": video_id, "deleted": True}
    finally:
        store.close()
