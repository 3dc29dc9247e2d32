from __future__ import annotations

import json
import os
import sqlite3
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from vidtube.storage.feed_query import (
    Equals,
    InSubquery,
    NotEquals,
    Ordering,
    Raw,
    TextMatch,
    all_of,
    fetch_page,
    register_functions,
)


SCHEMA_VERSION = 2

VISIBILITIES = ("public", "private")
REACTION_TYPES = ("like", "dislike")
JOB_KINDS = ("title", "description", "thumbnail")


class ConflictError(ValueError):
    """Raised when a write would violate a uniqueness rule."""


def _utc_ts() -> float:
    return time.time()


def _new_uuid() -> str:
    return str(uuid.uuid4())


def _json_dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def default_db_path() -> str:
    return os.getenv("VIDTUBE_SQLITE_PATH", "data/app.db")


# --- Feed orderings (shared by store page methods and the API cursor codec)

_VIEW_COUNT_SQL = "(SELECT COUNT(*) FROM video_views vv WHERE vv.video_id = v.video_id)"

VIDEOS_BY_UPDATED = Ordering(
    field="updated_at", expression="v.updated_at", id_expression="v.video_id", id_key="video_id"
)
VIDEOS_BY_VIEW_COUNT = Ordering(
    field="view_count", expression=_VIEW_COUNT_SQL, id_expression="v.video_id", id_key="video_id", kind="number"
)
HISTORY_BY_VIEWED = Ordering(
    field="viewed_at", expression="h.updated_at", id_expression="v.video_id", id_key="video_id"
)
LIKED_BY_LIKED = Ordering(
    field="liked_at", expression="lr.updated_at", id_expression="v.video_id", id_key="video_id"
)
PLAYLIST_VIDEOS_BY_ADDED = Ordering(
    field="added_at", expression="pv.updated_at", id_expression="v.video_id", id_key="video_id"
)
PLAYLISTS_BY_UPDATED = Ordering(
    field="updated_at", expression="p.updated_at", id_expression="p.playlist_id", id_key="playlist_id"
)
COMMENTS_BY_UPDATED = Ordering(
    field="updated_at", expression="c.updated_at", id_expression="c.comment_id", id_key="comment_id"
)
SUBSCRIPTIONS_BY_UPDATED = Ordering(
    field="updated_at", expression="s.updated_at", id_expression="s.creator_id", id_key="creator_id"
)
JOB_EVENTS_BY_CREATED = Ordering(
    field="created_at",
    expression="e.created_at",
    id_expression="e.event_id",
    id_key="event_id",
    direction="asc",
)


_VIDEO_SELECT = f"""
  v.video_id, v.user_id, v.category_id, v.title, v.description, v.visibility,
  v.media_status, v.media_upload_id, v.media_asset_id, v.media_playback_id,
  v.thumbnail_url, v.preview_url, v.duration_ms, v.created_at, v.updated_at,
  u.name AS user_name, u.image_url AS user_image_url,
  {_VIEW_COUNT_SQL} AS view_count,
  (SELECT COUNT(*) FROM video_reactions rl WHERE rl.video_id = v.video_id AND rl.type = 'like') AS like_count,
  (SELECT COUNT(*) FROM video_reactions rd WHERE rd.video_id = v.video_id AND rd.type = 'dislike') AS dislike_count
"""

_VIDEO_FROM = "videos v JOIN users u ON u.user_id = v.user_id"

_PUBLIC = Equals("v.visibility", "public")


def _video_item(r: sqlite3.Row) -> dict[str, Any]:
    return {
        "video_id": r["video_id"],
        "user_id": r["user_id"],
        "category_id": r["category_id"],
        "title": r["title"],
        "description": r["description"],
        "visibility": r["visibility"],
        "media_status": r["media_status"],
        "media_playback_id": r["media_playback_id"],
        "thumbnail_url": r["thumbnail_url"],
        "preview_url": r["preview_url"],
        "duration_ms": int(r["duration_ms"]),
        "created_at": float(r["created_at"]),
        "updated_at": float(r["updated_at"]),
        "view_count": int(r["view_count"]),
        "like_count": int(r["like_count"]),
        "dislike_count": int(r["dislike_count"]),
        "user": {
            "user_id": r["user_id"],
            "name": r["user_name"],
            "image_url": r["user_image_url"],
        },
    }


def _with_timestamp(key: str):
    def _map(r: sqlite3.Row) -> dict[str, Any]:
        item = _video_item(r)
        item[key] = float(r[key])
        return item

    return _map


@dataclass(frozen=True)
class UserRecord:
    user_id: str
    auth_id: str
    name: str
    image_url: str
    created_at: float


@dataclass(frozen=True)
class CategoryRecord:
    category_id: str
    name: str
    description: str | None
    created_at: float


@dataclass(frozen=True)
class VideoRecord:
    video_id: str
    user_id: str
    title: str
    visibility: str
    media_status: str
    created_at: float
    updated_at: float


@dataclass(frozen=True)
class CommentRecord:
    comment_id: str
    video_id: str
    user_id: str
    value: str
    created_at: float


@dataclass(frozen=True)
class PlaylistRecord:
    playlist_id: str
    user_id: str
    name: str
    description: str | None
    created_at: float


@dataclass(frozen=True)
class WorkflowJobRecord:
    job_id: str
    video_id: str
    user_id: str
    kind: str
    created_at: float
    status: str


class SQLiteStore:
    """SQLite-backed store for users, videos, engagement and workflow jobs.

    One store (and connection) per request or worker loop. Feed reads go
    through `fetch_page`; every `list_*_page` method only declares the
    predicate and ordering of its feed.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        self.db_path = Path(db_path or default_db_path()).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        register_functions(self._conn)
        self._conn.execute("PRAGMA foreign_keys = ON;")
        self._conn.execute("PRAGMA journal_mode = WAL;")
        self._conn.execute("PRAGMA synchronous = NORMAL;")

        self._init_schema()

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self, *, mode: str = "IMMEDIATE") -> Iterable[None]:
        """Context manager for an explicit SQLite transaction.

        `BEGIN IMMEDIATE` takes the write lock up front, so queue claims stay
        single-writer even if two workers share a database.
        """
        self._conn.execute(f"BEGIN {mode};")
        try:
            yield
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL
            );
            """
        )

        # Base schema (v1): users, catalog, engagement, playlists.
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
              user_id TEXT PRIMARY KEY,
              auth_id TEXT NOT NULL UNIQUE,
              name TEXT NOT NULL,
              image_url TEXT NOT NULL DEFAULT '',
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS categories (
              category_id TEXT PRIMARY KEY,
              name TEXT NOT NULL UNIQUE,
              description TEXT,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS videos (
              video_id TEXT PRIMARY KEY,
              user_id TEXT NOT NULL,
              category_id TEXT,
              title TEXT NOT NULL,
              description TEXT,
              visibility TEXT NOT NULL DEFAULT 'private',
              media_status TEXT NOT NULL DEFAULT 'waiting',
              media_upload_id TEXT UNIQUE,
              media_asset_id TEXT UNIQUE,
              media_playback_id TEXT UNIQUE,
              thumbnail_url TEXT,
              preview_url TEXT,
              duration_ms INTEGER NOT NULL DEFAULT 0,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL,
              FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
              FOREIGN KEY (category_id) REFERENCES categories(category_id) ON DELETE SET NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS video_views (
              user_id TEXT NOT NULL,
              video_id TEXT NOT NULL,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL,
              PRIMARY KEY (user_id, video_id),
              FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
              FOREIGN KEY (video_id) REFERENCES videos(video_id) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS video_reactions (
              user_id TEXT NOT NULL,
              video_id TEXT NOT NULL,
              type TEXT NOT NULL,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL,
              PRIMARY KEY (user_id, video_id),
              FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
              FOREIGN KEY (video_id) REFERENCES videos(video_id) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS comments (
              comment_id TEXT PRIMARY KEY,
              video_id TEXT NOT NULL,
              user_id TEXT NOT NULL,
              value TEXT NOT NULL,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL,
              FOREIGN KEY (video_id) REFERENCES videos(video_id) ON DELETE CASCADE,
              FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS comment_reactions (
              user_id TEXT NOT NULL,
              comment_id TEXT NOT NULL,
              type TEXT NOT NULL,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL,
              PRIMARY KEY (user_id, comment_id),
              FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE,
              FOREIGN KEY (comment_id) REFERENCES comments(comment_id) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS subscriptions (
              viewer_id TEXT NOT NULL,
              creator_id TEXT NOT NULL,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL,
              PRIMARY KEY (viewer_id, creator_id),
              FOREIGN KEY (viewer_id) REFERENCES users(user_id) ON DELETE CASCADE,
              FOREIGN KEY (creator_id) REFERENCES users(user_id) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS playlists (
              playlist_id TEXT PRIMARY KEY,
              user_id TEXT NOT NULL,
              name TEXT NOT NULL,
              description TEXT,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL,
              FOREIGN KEY (user_id) REFERENCES users(user_id) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS playlist_videos (
              playlist_id TEXT NOT NULL,
              video_id TEXT NOT NULL,
              created_at REAL NOT NULL,
              updated_at REAL NOT NULL,
              PRIMARY KEY (playlist_id, video_id),
              FOREIGN KEY (playlist_id) REFERENCES playlists(playlist_id) ON DELETE CASCADE,
              FOREIGN KEY (video_id) REFERENCES videos(video_id) ON DELETE CASCADE
            );
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_videos_visibility_ts ON videos(visibility, updated_at, video_id);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_videos_user_ts ON videos(user_id, updated_at, video_id);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_videos_category ON videos(category_id, updated_at);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_views_video ON video_views(video_id);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_views_user_ts ON video_views(user_id, updated_at);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_reactions_video ON video_reactions(video_id, type);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_reactions_user_ts ON video_reactions(user_id, type, updated_at);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_comments_video_ts ON comments(video_id, updated_at, comment_id);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_subscriptions_viewer_ts ON subscriptions(viewer_id, updated_at);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_subscriptions_creator ON subscriptions(creator_id);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_playlists_user_ts ON playlists(user_id, updated_at);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_playlist_videos_ts ON playlist_videos(playlist_id, updated_at);")

        # New databases start at schema_version=1 and migrate forward explicitly.
        cur.execute(
            "INSERT OR IGNORE INTO meta(key, value) VALUES(?, ?);",
            ("schema_version", "1"),
        )
        self._conn.commit()

        self._migrate_if_needed()

    def _get_schema_version(self) -> int:
        row = self._conn.execute("SELECT value FROM meta WHERE key = ?;", ("schema_version",)).fetchone()
        if row is None:
            return 0
        try:
            return int(row["value"])
        except ValueError:
            return 0

    def _set_schema_version(self, version: int) -> None:
        self._conn.execute(
            "INSERT INTO meta(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value;",
            ("schema_version", str(int(version))),
        )

    def _migrate_if_needed(self) -> None:
        current = self._get_schema_version()
        target = int(SCHEMA_VERSION)
        if current == target:
            return
        if current > target:
            raise RuntimeError(f"DB schema_version={current} is newer than code expects ({target}).")

        cur = self._conn.cursor()
        cur.execute("BEGIN;")
        try:
            while current < target:
                if current == 1:
                    self._migrate_1_to_2(cur)
                    current = 2
                    self._set_schema_version(current)
                else:
                    raise RuntimeError(f"Missing migration step for schema_version={current} -> {current+1}")
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _migrate_1_to_2(self, cur: sqlite3.Cursor) -> None:
        # AI workflow queue + per-job trace events.
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_jobs (
              job_id TEXT PRIMARY KEY,
              video_id TEXT NOT NULL,
              user_id TEXT NOT NULL,
              kind TEXT NOT NULL,
              prompt TEXT,
              status TEXT NOT NULL,
              error TEXT,
              created_at REAL NOT NULL,
              started_at REAL,
              ended_at REAL,
              FOREIGN KEY (video_id) REFERENCES videos(video_id) ON DELETE CASCADE
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS job_events (
              event_id TEXT PRIMARY KEY,
              job_id TEXT NOT NULL,
              created_at REAL NOT NULL,
              event_type TEXT NOT NULL,
              payload_json TEXT NOT NULL,
              FOREIGN KEY (job_id) REFERENCES workflow_jobs(job_id) ON DELETE CASCADE
            );
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status_ts ON workflow_jobs(status, created_at);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_job_events_job_ts ON job_events(job_id, created_at);")

    # --- Users
    def create_user(self, *, auth_id: str, name: str, image_url: str = "") -> UserRecord:
        user_id = _new_uuid()
        ts = _utc_ts()
        try:
            self._conn.execute(
                """
                INSERT INTO users(user_id, auth_id, name, image_url, created_at, updated_at)
                VALUES(?, ?, ?, ?, ?, ?);
                """,
                (user_id, auth_id, name, image_url, ts, ts),
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"User with auth_id {auth_id!r} already exists.") from e
        self._conn.commit()
        return UserRecord(user_id=user_id, auth_id=auth_id, name=name, image_url=image_url, created_at=ts)

    def get_user(self, *, user_id: str) -> sqlite3.Row | None:
        return self._conn.execute(
            "SELECT user_id, auth_id, name, image_url, created_at, updated_at FROM users WHERE user_id = ? LIMIT 1;",
            (user_id,),
        ).fetchone()

    def get_user_by_auth_id(self, *, auth_id: str) -> sqlite3.Row | None:
        return self._conn.execute(
            "SELECT user_id, auth_id, name, image_url, created_at, updated_at FROM users WHERE auth_id = ? LIMIT 1;",
            (auth_id,),
        ).fetchone()

    def get_user_detail(self, *, user_id: str, viewer_id: str | None) -> dict[str, Any] | None:
        r = self._conn.execute(
            """
            SELECT
              u.user_id, u.name, u.image_url, u.created_at,
              (SELECT COUNT(*) FROM videos v WHERE v.user_id = u.user_id) AS video_count,
              (SELECT COUNT(*) FROM subscriptions s WHERE s.creator_id = u.user_id) AS subscriber_count,
              EXISTS(
                SELECT 1 FROM subscriptions s2 WHERE s2.creator_id = u.user_id AND s2.viewer_id = ?
              ) AS viewer_subscribed
            FROM users u
            WHERE u.user_id = ?
            LIMIT 1;
            """,
            (viewer_id, user_id),
        ).fetchone()
        if r is None:
            return None
        return {
            "user_id": r["user_id"],
            "name": r["name"],
            "image_url": r["image_url"],
            "created_at": float(r["created_at"]),
            "video_count": int(r["video_count"]),
            "subscriber_count": int(r["subscriber_count"]),
            "viewer_subscribed": bool(r["viewer_subscribed"]),
        }

    # --- Categories
    def create_category(self, *, name: str, description: str | None = None) -> CategoryRecord:
        category_id = _new_uuid()
        ts = _utc_ts()
        try:
            self._conn.execute(
                """
                INSERT INTO categories(category_id, name, description, created_at, updated_at)
                VALUES(?, ?, ?, ?, ?);
                """,
                (category_id, name, description, ts, ts),
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError(f"Category {name!r} already exists.") from e
        self._conn.commit()
        return CategoryRecord(category_id=category_id, name=name, description=description, created_at=ts)

    def get_category(self, *, category_id: str) -> sqlite3.Row | None:
        return self._conn.execute(
            "SELECT category_id, name, description, created_at, updated_at FROM categories WHERE category_id = ? LIMIT 1;",
            (category_id,),
        ).fetchone()

    def list_categories(self) -> list[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT category_id, name, description, created_at FROM categories ORDER BY name ASC;"
        ).fetchall()
        return [
            {
                "category_id": r["category_id"],
                "name": r["name"],
                "description": r["description"],
                "created_at": float(r["created_at"]),
            }
            for r in rows
        ]

    # --- Videos
    def create_video(
        self,
        *,
        user_id: str,
        title: str = "Untitled",
        media_upload_id: str | None = None,
    ) -> VideoRecord:
        video_id = _new_uuid()
        ts = _utc_ts()
        self._conn.execute(
            """
            INSERT INTO videos(
              video_id, user_id, title, visibility, media_status, media_upload_id, created_at, updated_at
            ) VALUES(?, ?, ?, 'private', 'waiting', ?, ?, ?);
            """,
            (video_id, user_id, title, media_upload_id, ts, ts),
        )
        self._conn.commit()
        return VideoRecord(
            video_id=video_id,
            user_id=user_id,
            title=title,
            visibility="private",
            media_status="waiting",
            created_at=ts,
            updated_at=ts,
        )

    def get_video(self, *, video_id: str) -> sqlite3.Row | None:
        return self._conn.execute(
            """
            SELECT
              video_id, user_id, category_id, title, description, visibility,
              media_status, media_upload_id, media_asset_id, media_playback_id,
              thumbnail_url, preview_url, duration_ms, created_at, updated_at
            FROM videos
            WHERE video_id = ?
            LIMIT 1;
            """,
            (video_id,),
        ).fetchone()

    def get_owned_video(self, *, video_id: str, user_id: str) -> sqlite3.Row | None:
        row = self.get_video(video_id=video_id)
        if row is None or str(row["user_id"]) != user_id:
            return None
        return row

    def get_video_detail(self, *, video_id: str, viewer_id: str | None) -> dict[str, Any] | None:
        r = self._conn.execute(
            f"""
            SELECT
              {_VIDEO_SELECT},
              (SELECT x.type FROM video_reactions x WHERE x.video_id = v.video_id AND x.user_id = ?) AS viewer_reaction,
              (SELECT COUNT(*) FROM subscriptions s WHERE s.creator_id = v.user_id) AS subscriber_count,
              EXISTS(
                SELECT 1 FROM subscriptions s2 WHERE s2.creator_id = v.user_id AND s2.viewer_id = ?
              ) AS viewer_subscribed
            FROM {_VIDEO_FROM}
            WHERE v.video_id = ?
            LIMIT 1;
            """,
            (viewer_id, viewer_id, video_id),
        ).fetchone()
        if r is None:
            return None
        item = _video_item(r)
        item["viewer_reaction"] = r["viewer_reaction"]
        item["user"]["subscriber_count"] = int(r["subscriber_count"])
        item["user"]["viewer_subscribed"] = bool(r["viewer_subscribed"])
        return item

    def update_video(self, *, video_id: str, user_id: str, changes: dict[str, Any]) -> sqlite3.Row | None:
        """Apply owner edits. Returns None when no video matched `(video_id, user_id)`."""
        allowed = {"title", "description", "category_id", "visibility"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unsupported fields: {sorted(unknown)}")
        if "visibility" in changes and changes["visibility"] not in VISIBILITIES:
            raise ValueError(f"visibility must be one of {list(VISIBILITIES)}.")
        category_id = changes.get("category_id")
        if category_id is not None and self.get_category(category_id=str(category_id)) is None:
            raise ValueError("Unknown category_id.")

        sets = [f"{k} = ?" for k in changes]
        params: list[Any] = list(changes.values())
        sets.append("updated_at = ?")
        params.append(_utc_ts())

        cur = self._conn.execute(
            f"UPDATE videos SET {', '.join(sets)} WHERE video_id = ? AND user_id = ?;",
            (*params, video_id, user_id),
        )
        self._conn.commit()
        if cur.rowcount != 1:
            return None
        return self.get_video(video_id=video_id)

    def update_video_media(self, *, video_id: str, **media: Any) -> None:
        """Record media-pipeline state (status, asset/playback ids, preview, duration).

        Written out-of-band by the media pipeline; does not touch `updated_at`
        so feed positions stay stable while processing completes.
        """
        allowed = {
            "media_status",
            "media_asset_id",
            "media_playback_id",
            "thumbnail_url",
            "preview_url",
            "duration_ms",
        }
        unknown = set(media) - allowed
        if unknown:
            raise ValueError(f"Unsupported media fields: {sorted(unknown)}")
        if not media:
            return
        sets = ", ".join(f"{k} = ?" for k in media)
        self._conn.execute(
            f"UPDATE videos SET {sets} WHERE video_id = ?;",
            (*media.values(), video_id),
        )
        self._conn.commit()

    def set_video_thumbnail(self, *, video_id: str, thumbnail_url: str | None) -> None:
        self._conn.execute("UPDATE videos SET thumbnail_url = ? WHERE video_id = ?;", (thumbnail_url, video_id))
        self._conn.commit()

    def delete_video(self, *, video_id: str, user_id: str) -> bool:
        cur = self._conn.execute("DELETE FROM videos WHERE video_id = ? AND user_id = ?;", (video_id, user_id))
        self._conn.commit()
        return cur.rowcount == 1

    def record_view(self, *, video_id: str, user_id: str) -> float:
        """Record (or refresh) the viewer's view; returns the new `viewed_at`."""
        ts = _utc_ts()
        self._conn.execute(
            """
            INSERT INTO video_views(user_id, video_id, created_at, updated_at)
            VALUES(?, ?, ?, ?)
            ON CONFLICT(user_id, video_id) DO UPDATE SET updated_at = excluded.updated_at;
            """,
            (user_id, video_id, ts, ts),
        )
        self._conn.commit()
        return ts

    def _toggle_reaction(self, *, table: str, target_col: str, target_id: str, user_id: str, type: str) -> str | None:  # noqa: A002
        if type not in REACTION_TYPES:
            raise ValueError(f"Invalid reaction type: {type!r}")

        with self.transaction(mode="IMMEDIATE"):
            existing = self._conn.execute(
                f"SELECT type FROM {table} WHERE user_id = ? AND {target_col} = ? LIMIT 1;",
                (user_id, target_id),
            ).fetchone()
            if existing is not None and str(existing["type"]) == type:
                # Same reaction twice clears it.
                self._conn.execute(
                    f"DELETE FROM {table} WHERE user_id = ? AND {target_col} = ?;",
                    (user_id, target_id),
                )
                return None

            ts = _utc_ts()
            self._conn.execute(
                f"""
                INSERT INTO {table}(user_id, {target_col}, type, created_at, updated_at)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(user_id, {target_col}) DO UPDATE SET
                  type = excluded.type,
                  updated_at = excluded.updated_at;
                """,
                (user_id, target_id, type, ts, ts),
            )
            return type

    def toggle_video_reaction(self, *, video_id: str, user_id: str, type: str) -> str | None:  # noqa: A002
        return self._toggle_reaction(
            table="video_reactions", target_col="video_id", target_id=video_id, user_id=user_id, type=type
        )

    # --- Video feeds
    def list_videos_page(
        self,
        *,
        limit: int,
        cursor: tuple[float, str] | None,
        category_id: str | None = None,
    ) -> dict[str, Any]:
        return fetch_page(
            self._conn,
            select_sql=_VIDEO_SELECT,
            from_sql=_VIDEO_FROM,
            predicate=all_of(_PUBLIC, Equals("v.category_id", category_id) if category_id else None),
            ordering=VIDEOS_BY_UPDATED,
            cursor=cursor,
            limit=limit,
            row_mapper=_video_item,
        )

    def list_trending_videos_page(self, *, limit: int, cursor: tuple[int, str] | None) -> dict[str, Any]:
        return fetch_page(
            self._conn,
            select_sql=_VIDEO_SELECT,
            from_sql=_VIDEO_FROM,
            predicate=all_of(_PUBLIC),
            ordering=VIDEOS_BY_VIEW_COUNT,
            cursor=cursor,
            limit=limit,
            row_mapper=_video_item,
        )

    def search_videos_page(
        self,
        *,
        query: str,
        limit: int,
        cursor: tuple[float, str] | None,
        category_id: str | None = None,
    ) -> dict[str, Any]:
        return fetch_page(
            self._conn,
            select_sql=_VIDEO_SELECT,
            from_sql=_VIDEO_FROM,
            predicate=all_of(
                _PUBLIC,
                TextMatch("v.title", query) if query else None,
                Equals("v.category_id", category_id) if category_id else None,
            ),
            ordering=VIDEOS_BY_UPDATED,
            cursor=cursor,
            limit=limit,
            row_mapper=_video_item,
        )

    def list_subscribed_videos_page(
        self, *, viewer_id: str, limit: int, cursor: tuple[float, str] | None
    ) -> dict[str, Any]:
        return fetch_page(
            self._conn,
            select_sql=_VIDEO_SELECT,
            from_sql=_VIDEO_FROM,
            predicate=all_of(
                _PUBLIC,
                InSubquery("v.user_id", "SELECT creator_id FROM subscriptions WHERE viewer_id = ?", (viewer_id,)),
            ),
            ordering=VIDEOS_BY_UPDATED,
            cursor=cursor,
            limit=limit,
            row_mapper=_video_item,
        )

    def list_suggestions_page(
        self, *, video_id: str, category_id: str | None, limit: int, cursor: tuple[float, str] | None
    ) -> dict[str, Any]:
        return fetch_page(
            self._conn,
            select_sql=_VIDEO_SELECT,
            from_sql=_VIDEO_FROM,
            predicate=all_of(
                _PUBLIC,
                NotEquals("v.video_id", video_id),
                Equals("v.category_id", category_id) if category_id else None,
            ),
            ordering=VIDEOS_BY_UPDATED,
            cursor=cursor,
            limit=limit,
            row_mapper=_video_item,
        )

    def list_user_videos_page(
        self, *, user_id: str, limit: int, cursor: tuple[float, str] | None
    ) -> dict[str, Any]:
        return fetch_page(
            self._conn,
            select_sql=_VIDEO_SELECT,
            from_sql=_VIDEO_FROM,
            predicate=all_of(_PUBLIC, Equals("v.user_id", user_id)),
            ordering=VIDEOS_BY_UPDATED,
            cursor=cursor,
            limit=limit,
            row_mapper=_video_item,
        )

    def list_studio_videos_page(
        self, *, user_id: str, limit: int, cursor: tuple[float, str] | None
    ) -> dict[str, Any]:
        return fetch_page(
            self._conn,
            select_sql=_VIDEO_SELECT,
            from_sql=_VIDEO_FROM,
            predicate=all_of(Equals("v.user_id", user_id)),
            ordering=VIDEOS_BY_UPDATED,
            cursor=cursor,
            limit=limit,
            row_mapper=_video_item,
        )

    def list_history_page(self, *, viewer_id: str, limit: int, cursor: tuple[float, str] | None) -> dict[str, Any]:
        return fetch_page(
            self._conn,
            select_sql=f"{_VIDEO_SELECT}, h.updated_at AS viewed_at",
            from_sql=f"{_VIDEO_FROM} JOIN video_views h ON h.video_id = v.video_id",
            predicate=all_of(_PUBLIC, Equals("h.user_id", viewer_id)),
            ordering=HISTORY_BY_VIEWED,
            cursor=cursor,
            limit=limit,
            row_mapper=_with_timestamp("viewed_at"),
        )

    def list_liked_page(self, *, viewer_id: str, limit: int, cursor: tuple[float, str] | None) -> dict[str, Any]:
        return fetch_page(
            self._conn,
            select_sql=f"{_VIDEO_SELECT}, lr.updated_at AS liked_at",
            from_sql=f"{_VIDEO_FROM} JOIN video_reactions lr ON lr.video_id = v.video_id",
            predicate=all_of(_PUBLIC, Equals("lr.user_id", viewer_id), Equals("lr.type", "like")),
            ordering=LIKED_BY_LIKED,
            cursor=cursor,
            limit=limit,
            row_mapper=_with_timestamp("liked_at"),
        )

    # --- Comments
    def create_comment(self, *, video_id: str, user_id: str, value: str) -> CommentRecord:
        comment_id = _new_uuid()
        ts = _utc_ts()
        self._conn.execute(
            """
            INSERT INTO comments(comment_id, video_id, user_id, value, created_at, updated_at)
            VALUES(?, ?, ?, ?, ?, ?);
            """,
            (comment_id, video_id, user_id, value, ts, ts),
        )
        self._conn.commit()
        return CommentRecord(comment_id=comment_id, video_id=video_id, user_id=user_id, value=value, created_at=ts)

    def get_comment(self, *, comment_id: str) -> sqlite3.Row | None:
        return self._conn.execute(
            "SELECT comment_id, video_id, user_id, value, created_at, updated_at FROM comments WHERE comment_id = ? LIMIT 1;",
            (comment_id,),
        ).fetchone()

    def delete_comment(self, *, comment_id: str, user_id: str) -> bool:
        cur = self._conn.execute(
            "DELETE FROM comments WHERE comment_id = ? AND user_id = ?;",
            (comment_id, user_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def count_comments(self, *, video_id: str) -> int:
        row = self._conn.execute("SELECT COUNT(*) AS n FROM comments WHERE video_id = ?;", (video_id,)).fetchone()
        return int(row["n"]) if row is not None else 0

    def toggle_comment_reaction(self, *, comment_id: str, user_id: str, type: str) -> str | None:  # noqa: A002
        return self._toggle_reaction(
            table="comment_reactions", target_col="comment_id", target_id=comment_id, user_id=user_id, type=type
        )

    def list_comments_page(
        self,
        *,
        video_id: str,
        viewer_id: str | None,
        limit: int,
        cursor: tuple[float, str] | None,
    ) -> dict[str, Any]:
        def _map(r: sqlite3.Row) -> dict[str, Any]:
            return {
                "comment_id": r["comment_id"],
                "video_id": r["video_id"],
                "user_id": r["user_id"],
                "value": r["value"],
                "created_at": float(r["created_at"]),
                "updated_at": float(r["updated_at"]),
                "like_count": int(r["like_count"]),
                "dislike_count": int(r["dislike_count"]),
                "viewer_reaction": r["viewer_reaction"],
                "user": {"user_id": r["user_id"], "name": r["user_name"], "image_url": r["user_image_url"]},
            }

        return fetch_page(
            self._conn,
            select_sql="""
              c.comment_id, c.video_id, c.user_id, c.value, c.created_at, c.updated_at,
              u.name AS user_name, u.image_url AS user_image_url,
              (SELECT COUNT(*) FROM comment_reactions cl WHERE cl.comment_id = c.comment_id AND cl.type = 'like') AS like_count,
              (SELECT COUNT(*) FROM comment_reactions cd WHERE cd.comment_id = c.comment_id AND cd.type = 'dislike') AS dislike_count,
              (SELECT cr.type FROM comment_reactions cr WHERE cr.comment_id = c.comment_id AND cr.user_id = ?) AS viewer_reaction
            """,
            select_params=(viewer_id,),
            from_sql="comments c JOIN users u ON u.user_id = c.user_id",
            predicate=all_of(Equals("c.video_id", video_id)),
            ordering=COMMENTS_BY_UPDATED,
            cursor=cursor,
            limit=limit,
            row_mapper=_map,
        )

    # --- Subscriptions
    def create_subscription(self, *, viewer_id: str, creator_id: str) -> dict[str, Any]:
        if viewer_id == creator_id:
            raise ValueError("Cannot subscribe to yourself.")
        ts = _utc_ts()
        cur = self._conn.execute(
            """
            INSERT INTO subscriptions(viewer_id, creator_id, created_at, updated_at)
            VALUES(?, ?, ?, ?)
            ON CONFLICT(viewer_id, creator_id) DO NOTHING;
            """,
            (viewer_id, creator_id, ts, ts),
        )
        self._conn.commit()
        if cur.rowcount != 1:
            raise ConflictError("Already subscribed.")
        return {"viewer_id": viewer_id, "creator_id": creator_id, "created_at": ts, "updated_at": ts}

    def delete_subscription(self, *, viewer_id: str, creator_id: str) -> bool:
        if viewer_id == creator_id:
            raise ValueError("Cannot unsubscribe from yourself.")
        cur = self._conn.execute(
            "DELETE FROM subscriptions WHERE viewer_id = ? AND creator_id = ?;",
            (viewer_id, creator_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def list_subscriptions_page(
        self, *, viewer_id: str, limit: int, cursor: tuple[float, str] | None
    ) -> dict[str, Any]:
        def _map(r: sqlite3.Row) -> dict[str, Any]:
            return {
                "viewer_id": r["viewer_id"],
                "creator_id": r["creator_id"],
                "created_at": float(r["created_at"]),
                "updated_at": float(r["updated_at"]),
                "user": {
                    "user_id": r["creator_id"],
                    "name": r["user_name"],
                    "image_url": r["user_image_url"],
                    "subscriber_count": int(r["subscriber_count"]),
                },
            }

        return fetch_page(
            self._conn,
            select_sql="""
              s.viewer_id, s.creator_id, s.created_at, s.updated_at,
              u.name AS user_name, u.image_url AS user_image_url,
              (SELECT COUNT(*) FROM subscriptions sc WHERE sc.creator_id = s.creator_id) AS subscriber_count
            """,
            from_sql="subscriptions s JOIN users u ON u.user_id = s.creator_id",
            predicate=all_of(Equals("s.viewer_id", viewer_id)),
            ordering=SUBSCRIPTIONS_BY_UPDATED,
            cursor=cursor,
            limit=limit,
            row_mapper=_map,
        )

    # --- Playlists
    def create_playlist(self, *, user_id: str, name: str, description: str | None = None) -> PlaylistRecord:
        playlist_id = _new_uuid()
        ts = _utc_ts()
        self._conn.execute(
            """
            INSERT INTO playlists(playlist_id, user_id, name, description, created_at, updated_at)
            VALUES(?, ?, ?, ?, ?, ?);
            """,
            (playlist_id, user_id, name, description, ts, ts),
        )
        self._conn.commit()
        return PlaylistRecord(
            playlist_id=playlist_id, user_id=user_id, name=name, description=description, created_at=ts
        )

    def get_playlist(self, *, playlist_id: str) -> dict[str, Any] | None:
        r = self._conn.execute(
            """
            SELECT
              p.playlist_id, p.user_id, p.name, p.description, p.created_at, p.updated_at,
              (SELECT COUNT(*) FROM playlist_videos pc WHERE pc.playlist_id = p.playlist_id) AS video_count
            FROM playlists p
            WHERE p.playlist_id = ?
            LIMIT 1;
            """,
            (playlist_id,),
        ).fetchone()
        if r is None:
            return None
        return {
            "playlist_id": r["playlist_id"],
            "user_id": r["user_id"],
            "name": r["name"],
            "description": r["description"],
            "created_at": float(r["created_at"]),
            "updated_at": float(r["updated_at"]),
            "video_count": int(r["video_count"]),
        }

    def delete_playlist(self, *, playlist_id: str, user_id: str) -> bool:
        cur = self._conn.execute(
            "DELETE FROM playlists WHERE playlist_id = ? AND user_id = ?;",
            (playlist_id, user_id),
        )
        self._conn.commit()
        return cur.rowcount == 1

    def add_video_to_playlist(self, *, playlist_id: str, video_id: str) -> float:
        ts = _utc_ts()
        with self.transaction(mode="IMMEDIATE"):
            self._conn.execute(
                """
                INSERT INTO playlist_videos(playlist_id, video_id, created_at, updated_at)
                VALUES(?, ?, ?, ?)
                ON CONFLICT(playlist_id, video_id) DO UPDATE SET updated_at = excluded.updated_at;
                """,
                (playlist_id, video_id, ts, ts),
            )
            self._conn.execute("UPDATE playlists SET updated_at = ? WHERE playlist_id = ?;", (ts, playlist_id))
        return ts

    def remove_video_from_playlist(self, *, playlist_id: str, video_id: str) -> bool:
        with self.transaction(mode="IMMEDIATE"):
            cur = self._conn.execute(
                "DELETE FROM playlist_videos WHERE playlist_id = ? AND video_id = ?;",
                (playlist_id, video_id),
            )
            removed = cur.rowcount == 1
            if removed:
                self._conn.execute(
                    "UPDATE playlists SET updated_at = ? WHERE playlist_id = ?;", (_utc_ts(), playlist_id)
                )
        return removed

    def list_playlists_page(self, *, user_id: str, limit: int, cursor: tuple[float, str] | None) -> dict[str, Any]:
        def _map(r: sqlite3.Row) -> dict[str, Any]:
            return {
                "playlist_id": r["playlist_id"],
                "user_id": r["user_id"],
                "name": r["name"],
                "description": r["description"],
                "created_at": float(r["created_at"]),
                "updated_at": float(r["updated_at"]),
                "video_count": int(r["video_count"]),
                "thumbnail_url": r["thumbnail_url"],
                "user": {"user_id": r["user_id"], "name": r["user_name"], "image_url": r["user_image_url"]},
            }

        return fetch_page(
            self._conn,
            select_sql="""
              p.playlist_id, p.user_id, p.name, p.description, p.created_at, p.updated_at,
              u.name AS user_name, u.image_url AS user_image_url,
              (SELECT COUNT(*) FROM playlist_videos pc WHERE pc.playlist_id = p.playlist_id) AS video_count,
              (
                SELECT tv.thumbnail_url
                FROM playlist_videos tp JOIN videos tv ON tv.video_id = tp.video_id
                WHERE tp.playlist_id = p.playlist_id
                ORDER BY tp.updated_at DESC, tp.video_id DESC
                LIMIT 1
              ) AS thumbnail_url
            """,
            from_sql="playlists p JOIN users u ON u.user_id = p.user_id",
            predicate=all_of(Equals("p.user_id", user_id)),
            ordering=PLAYLISTS_BY_UPDATED,
            cursor=cursor,
            limit=limit,
            row_mapper=_map,
        )

    def list_playlist_videos_page(
        self, *, playlist_id: str, viewer_id: str, limit: int, cursor: tuple[float, str] | None
    ) -> dict[str, Any]:
        return fetch_page(
            self._conn,
            select_sql=f"{_VIDEO_SELECT}, pv.updated_at AS added_at",
            from_sql=f"{_VIDEO_FROM} JOIN playlist_videos pv ON pv.video_id = v.video_id",
            predicate=all_of(
                Equals("pv.playlist_id", playlist_id),
                # The owner keeps seeing their own private uploads in their playlists.
                Raw("v.visibility = 'public' OR v.user_id = ?", (viewer_id,)),
            ),
            ordering=PLAYLIST_VIDEOS_BY_ADDED,
            cursor=cursor,
            limit=limit,
            row_mapper=_with_timestamp("added_at"),
        )

    # --- Workflow jobs
    def create_workflow_job(
        self, *, video_id: str, user_id: str, kind: str, prompt: str | None = None
    ) -> WorkflowJobRecord:
        if kind not in JOB_KINDS:
            raise ValueError(f"Invalid workflow kind: {kind!r}")
        job_id = _new_uuid()
        created_at = _utc_ts()
        self._conn.execute(
            """
            INSERT INTO workflow_jobs(job_id, video_id, user_id, kind, prompt, status, created_at)
            VALUES(?, ?, ?, ?, ?, 'queued', ?);
            """,
            (job_id, video_id, user_id, kind, prompt, created_at),
        )
        self._conn.commit()
        return WorkflowJobRecord(
            job_id=job_id, video_id=video_id, user_id=user_id, kind=kind, created_at=created_at, status="queued"
        )

    def get_workflow_job(self, *, job_id: str) -> sqlite3.Row | None:
        return self._conn.execute(
            """
            SELECT job_id, video_id, user_id, kind, prompt, status, error, created_at, started_at, ended_at
            FROM workflow_jobs
            WHERE job_id = ?
            LIMIT 1;
            """,
            (job_id,),
        ).fetchone()

    def claim_next_queued_job(self) -> sqlite3.Row | None:
        """Atomically claim the oldest queued job and mark it as running."""
        with self.transaction(mode="IMMEDIATE"):
            row = self._conn.execute(
                """
                SELECT job_id
                FROM workflow_jobs
                WHERE status = 'queued'
                ORDER BY created_at ASC, job_id ASC
                LIMIT 1;
                """
            ).fetchone()
            if row is None:
                return None

            job_id = str(row["job_id"])
            updated = self._conn.execute(
                """
                UPDATE workflow_jobs
                SET
                  status = 'running',
                  started_at = COALESCE(started_at, ?)
                WHERE job_id = ? AND status = 'queued';
                """,
                (_utc_ts(), job_id),
            )
            if updated.rowcount != 1:
                return None
            return self.get_workflow_job(job_id=job_id)

    def update_job_status(self, job_id: str, status: str, *, error: str | None = None) -> None:
        ts = _utc_ts()
        started_at = ts if status == "running" else None
        ended_at = ts if status in {"completed", "failed"} else None

        self._conn.execute(
            """
            UPDATE workflow_jobs
            SET
              status = ?,
              started_at = COALESCE(started_at, ?),
              ended_at = COALESCE(ended_at, ?),
              error = COALESCE(?, error)
            WHERE job_id = ?;
            """,
            (status, started_at, ended_at, error, job_id),
        )
        self._conn.commit()

    def schema_version(self) -> int:
        return self._get_schema_version()

    def count_catalog(self) -> dict[str, int]:
        row = self._conn.execute(
            """
            SELECT
              (SELECT COUNT(*) FROM users) AS users,
              (SELECT COUNT(*) FROM videos) AS videos,
              (SELECT COUNT(*) FROM videos WHERE visibility = 'public') AS public_videos;
            """
        ).fetchone()
        return {"users": int(row["users"]), "videos": int(row["videos"]), "public_videos": int(row["public_videos"])}

    def count_jobs_by_status(self) -> dict[str, int]:
        rows = self._conn.execute(
            "SELECT status, COUNT(*) AS n FROM workflow_jobs GROUP BY status ORDER BY status;",
        ).fetchall()
        return {str(r["status"]): int(r["n"]) for r in rows}

    def reconcile_running_jobs(self, *, reason: str = "server_restarted") -> int:
        """Mark jobs left 'running' by a previous process as failed."""
        ts = _utc_ts()
        rows = self._conn.execute("SELECT job_id FROM workflow_jobs WHERE status = 'running';").fetchall()
        if not rows:
            return 0

        job_ids = [r["job_id"] for r in rows]
        for job_id in job_ids:
            self._conn.execute(
                """
                UPDATE workflow_jobs
                SET
                  status = 'failed',
                  ended_at = COALESCE(ended_at, ?),
                  error = COALESCE(error, ?)
                WHERE job_id = ? AND status = 'running';
                """,
                (ts, reason, job_id),
            )
            self._conn.execute(
                """
                INSERT INTO job_events(event_id, job_id, created_at, event_type, payload_json)
                VALUES(?, ?, ?, ?, ?);
                """,
                (_new_uuid(), job_id, ts, "job_failed", _json_dumps({"error": reason})),
            )

        self._conn.commit()
        return len(job_ids)

    # --- Job events (trace)
    def append_job_event(self, job_id: str, event_type: str, payload: dict[str, Any]) -> str:
        event_id = _new_uuid()
        created_at = _utc_ts()
        self._conn.execute(
            """
            INSERT INTO job_events(event_id, job_id, created_at, event_type, payload_json)
            VALUES(?, ?, ?, ?, ?);
            """,
            (event_id, job_id, created_at, event_type, _json_dumps(payload)),
        )
        self._conn.commit()
        return event_id

    def get_latest_job_event(self, *, job_id: str, event_type: str) -> sqlite3.Row | None:
        return self._conn.execute(
            """
            SELECT event_id, job_id, created_at, event_type, payload_json
            FROM job_events
            WHERE job_id = ? AND event_type = ?
            ORDER BY created_at DESC, event_id DESC
            LIMIT 1;
            """,
            (job_id, event_type),
        ).fetchone()

    def list_job_events_page(
        self, *, job_id: str, limit: int, cursor: tuple[float, str] | None
    ) -> dict[str, Any]:
        def _map(r: sqlite3.Row) -> dict[str, Any]:
            return {
                "event_id": r["event_id"],
                "job_id": r["job_id"],
                "created_at": float(r["created_at"]),
                "event_type": r["event_type"],
                "payload": json.loads(r["payload_json"]),
            }

        return fetch_page(
            self._conn,
            select_sql="e.event_id, e.job_id, e.created_at, e.event_type, e.payload_json",
            from_sql="job_events e",
            predicate=all_of(Equals("e.job_id", job_id)),
            ordering=JOB_EVENTS_BY_CREATED,
            cursor=cursor,
            limit=limit,
            row_mapper=_map,
        )
