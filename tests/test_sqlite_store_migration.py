from __future__ import annotations

import json
import sqlite3
import tempfile

import pytest

from vidtube.storage.sqlite_store import SCHEMA_VERSION, ConflictError, SQLiteStore


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name = ? LIMIT 1;",
        (name,),
    ).fetchone()
    return row is not None


def test_reconcile_running_jobs_marks_failed_and_records_event() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = f"{td}/app.db"
        store = SQLiteStore(db_path)
        try:
            user_id = store.create_user(auth_id="auth_u", name="U").user_id
            video = store.create_video(user_id=user_id)
            job = store.create_workflow_job(video_id=video.video_id, user_id=user_id, kind="title")
            store.update_job_status(job.job_id, "running")

            reconciled = store.reconcile_running_jobs(reason="server_restarted")
            assert reconciled == 1

            job_row = store.get_workflow_job(job_id=job.job_id)
            assert job_row is not None
            assert job_row["status"] == "failed"
            assert job_row["error"] == "server_restarted"

            evt = store.get_latest_job_event(job_id=job.job_id, event_type="job_failed")
            assert evt is not None
            payload = json.loads(evt["payload_json"])
            assert payload["error"] == "server_restarted"
        finally:
            store.close()


def test_migration_creates_workflow_tables() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = f"{td}/app.db"
        store = SQLiteStore(db_path)
        try:
            assert _table_exists(store._conn, "workflow_jobs")
            assert _table_exists(store._conn, "job_events")
            assert store._get_schema_version() == SCHEMA_VERSION
        finally:
            store.close()

        # Reopening an up-to-date database is a no-op.
        store = SQLiteStore(db_path)
        try:
            assert store._get_schema_version() == SCHEMA_VERSION
        finally:
            store.close()


def test_newer_schema_is_refused() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = f"{td}/app.db"
        SQLiteStore(db_path).close()
        conn = sqlite3.connect(db_path)
        conn.execute("UPDATE meta SET value = ? WHERE key = 'schema_version';", (str(SCHEMA_VERSION + 1),))
        conn.commit()
        conn.close()

        with pytest.raises(RuntimeError):
            SQLiteStore(db_path)


def test_claim_takes_oldest_queued_job_once() -> None:
    with tempfile.TemporaryDirectory() as td:
        store = SQLiteStore(f"{td}/app.db")
        try:
            user_id = store.create_user(auth_id="auth_u", name="U").user_id
            video = store.create_video(user_id=user_id)
            first = store.create_workflow_job(video_id=video.video_id, user_id=user_id, kind="title")
            second = store.create_workflow_job(video_id=video.video_id, user_id=user_id, kind="description")
            store._conn.execute("UPDATE workflow_jobs SET created_at = 1.0 WHERE job_id = ?;", (first.job_id,))
            store._conn.execute("UPDATE workflow_jobs SET created_at = 2.0 WHERE job_id = ?;", (second.job_id,))
            store._conn.commit()

            assert store.claim_next_queued_job()["job_id"] == first.job_id
            assert store.claim_next_queued_job()["job_id"] == second.job_id
            assert store.claim_next_queued_job() is None
            assert store.count_jobs_by_status() == {"running": 2}
        finally:
            store.close()


def test_unique_constraints_surface_as_conflicts() -> None:
    with tempfile.TemporaryDirectory() as td:
        store = SQLiteStore(f"{td}/app.db")
        try:
            store.create_user(auth_id="auth_dup", name="A")
            with pytest.raises(ConflictError):
                store.create_user(auth_id="auth_dup", name="B")
            store.create_category(name="Music")
            with pytest.raises(ConflictError):
                store.create_category(name="Music")
        finally:
            store.close()
