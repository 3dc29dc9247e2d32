from __future__ import annotations

import os
import tempfile

import pytest
from fastapi.testclient import TestClient

from vidtube.api.app import create_app
from vidtube.storage.sqlite_store import SCHEMA_VERSION, SQLiteStore


def test_health_version_and_worker_snapshot(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        monkeypatch.setenv("VIDTUBE_SQLITE_PATH", os.path.join(td, "app.db"))
        monkeypatch.setenv("VIDTUBE_ENABLE_WORKER", "0")
        monkeypatch.delenv("IMAGE_MODEL", raising=False)

        app = create_app()
        with TestClient(app) as client:
            health = client.get("/api/v1/healthz").json()
            assert health == {
                "status": "ok",
                "schema_version": SCHEMA_VERSION,
                "catalog": {"users": 0, "videos": 0, "public_videos": 0},
            }

            version = client.get("/api/v1/version").json()
            assert version["service"] == "vidtube"
            assert version["schema_version"] == SCHEMA_VERSION
            assert version["paging"] == {"min_limit": 1, "max_limit": 100}
            assert version["models"]["image"] == "dall-e-3"

            worker = client.get("/api/v1/system/worker").json()
            assert worker["worker"] == {"enabled": False, "running": False}
            assert worker["queue"]["jobs_by_status"] == {}
            assert worker["rate_limit"]["max_requests"] == 10
            assert worker["rate_limit"]["tracked_viewers"] == 0


def test_startup_reconciles_interrupted_jobs(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        monkeypatch.setenv("VIDTUBE_SQLITE_PATH", db_path)
        monkeypatch.setenv("VIDTUBE_ENABLE_WORKER", "0")

        store = SQLiteStore(db_path)
        try:
            user_id = store.create_user(auth_id="auth_u", name="U").user_id
            video = store.create_video(user_id=user_id)
            job = store.create_workflow_job(video_id=video.video_id, user_id=user_id, kind="title")
            store.update_job_status(job.job_id, "running")
        finally:
            store.close()

        app = create_app()
        with TestClient(app) as client:
            body = client.get("/api/v1/system/worker").json()
            assert body["startup"]["reconciled_running_jobs"] == 1
            assert body["queue"]["jobs_by_status"] == {"failed": 1}


def test_unknown_user_is_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        monkeypatch.setenv("VIDTUBE_SQLITE_PATH", os.path.join(td, "app.db"))
        monkeypatch.setenv("VIDTUBE_ENABLE_WORKER", "0")

        app = create_app()
        with TestClient(app) as client:
            resp = client.get("/api/v1/users/00000000-0000-4000-8000-000000000000")
            assert resp.status_code == 404
            assert resp.json() == {"error": {"code": "not_found", "message": "User not found."}}


def test_healthz_reports_unavailable_store(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        monkeypatch.setenv("VIDTUBE_SQLITE_PATH", os.path.join(td, "app.db"))
        monkeypatch.setenv("VIDTUBE_ENABLE_WORKER", "0")

        app = create_app()
        with TestClient(app) as client:
            blocker = os.path.join(td, "not-a-dir")
            with open(blocker, "w", encoding="utf-8") as f:
                f.write("x")
            monkeypatch.setenv("VIDTUBE_SQLITE_PATH", os.path.join(blocker, "app.db"))

            resp = client.get("/api/v1/healthz")
            assert resp.status_code == 503
            assert resp.json()["error"]["code"] == "unavailable"
