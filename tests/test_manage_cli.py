from __future__ import annotations

import os
import tempfile

from vidtube.cli.manage import main
from vidtube.storage.sqlite_store import SQLiteStore


def test_seed_demo_populates_public_feed() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        assert main(["--db-path", db_path, "seed-demo", "--videos", "7"]) == 0
        # Seeding twice reuses creators and categories.
        assert main(["--db-path", db_path, "seed-demo", "--videos", "1"]) == 0

        store = SQLiteStore(db_path)
        try:
            page = store.list_videos_page(limit=100, cursor=None)
            assert len(page["items"]) == 8
            assert len(store.list_categories()) == 4
        finally:
            store.close()


def test_create_user_conflict_and_media_ready() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        assert main(["--db-path", db_path, "create-user", "--auth-id", "a1", "--name", "Ann"]) == 0
        assert main(["--db-path", db_path, "create-user", "--auth-id", "a1", "--name", "Ann"]) == 1

        store = SQLiteStore(db_path)
        try:
            user = store.get_user_by_auth_id(auth_id="a1")
            video = store.create_video(user_id=str(user["user_id"]))
        finally:
            store.close()

        argv = ["--db-path", db_path, "media-ready", "--video-id", video.video_id, "--playback-id", "pb9", "--duration-ms", "6500"]
        assert main(argv) == 0

        store = SQLiteStore(db_path)
        try:
            row = store.get_video(video_id=video.video_id)
            assert row["media_status"] == "ready"
            assert row["preview_url"] == "https://image.mux.com/pb9/animated.gif"
            assert row["thumbnail_url"] == "https://image.mux.com/pb9/thumbnail.jpg"
            assert row["duration_ms"] == 6500
        finally:
            store.close()
