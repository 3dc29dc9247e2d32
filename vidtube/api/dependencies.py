from __future__ import annotations

import sqlite3
import uuid

from fastapi import Request

from vidtube.api.errors import APIError, not_found, unauthenticated
from vidtube.api.ratelimit import SlidingWindowLimiter
from vidtube.storage.sqlite_store import SQLiteStore


AUTH_HEADER = "X-User-Id"


def current_viewer(request: Request, store: SQLiteStore) -> sqlite3.Row | None:
    """Resolve the signed-in viewer from the auth header.

    The header carries the auth provider's id; an unknown id is treated as
    signed out, never as an error.
    """
    auth_id = (request.headers.get(AUTH_HEADER) or "").strip()
    if not auth_id:
        return None
    return store.get_user_by_auth_id(auth_id=auth_id)


def current_viewer_id(request: Request, store: SQLiteStore) -> str | None:
    viewer = current_viewer(request, store)
    return str(viewer["user_id"]) if viewer is not None else None


def get_rate_limiter(request: Request) -> SlidingWindowLimiter:
    return request.app.state.rate_limiter


def require_viewer(request: Request, store: SQLiteStore) -> str:
    """Return the viewer's user id for protected mutations (401 / 429 otherwise)."""
    viewer_id = current_viewer_id(request, store)
    if viewer_id is None:
        raise unauthenticated()
    if not get_rate_limiter(request).allow(viewer_id):
        raise APIError(status_code=429, code="rate_limited", message="Too many requests.")
    return viewer_id


def parse_uuid(value: str, *, what: str) -> str:
    """Normalize an id taken from the path/query; malformed ids are 400, not 404."""
    try:
        return str(uuid.UUID(str(value).strip()))
    except ValueError as e:
        raise APIError(status_code=400, code="invalid_argument", message=f"Invalid {what}.") from e


def visible_video_or_404(store: SQLiteStore, *, video_id: str, viewer_id: str | None) -> sqlite3.Row:
    """Private videos exist only for their owner; everyone else gets 404."""
    row = store.get_video(video_id=video_id)
    if row is None:
        raise not_found("Video")
    if str(row["visibility"]) != "public" and str(row["user_id"]) != viewer_id:
        raise not_found("Video")
    return row


def owned_video_or_404(store: SQLiteStore, *, video_id: str, user_id: str) -> sqlite3.Row:
    row = store.get_owned_video(video_id=video_id, user_id=user_id)
    if row is None:
        raise not_found("Video")
    return row
