from __future__ import annotations

import json
import os
import tempfile

from vidtube.config.load_config import load_app_config
from vidtube.llm.openai_compat import ChatCompletionResult, ImageGenerationResult
from vidtube.runtime.worker import WorkflowWorker
from vidtube.storage.sqlite_store import SQLiteStore


class _StubLLM:
    def __init__(self, *, content: str = "", fail: bool = False) -> None:
        self.content = content
        self.fail = fail
        self.calls: list[dict] = []

    def chat(self, *, system: str, user: str, temperature: float) -> ChatCompletionResult:
        self.calls.append({"system": system, "user": user, "temperature": temperature})
        if self.fail:
            raise RuntimeError("provider unavailable")
        return ChatCompletionResult(content=self.content, raw={})

    def generate_image(self, *, prompt: str, size: str, model: str | None = None) -> ImageGenerationResult:
        self.calls.append({"prompt": prompt, "size": size, "model": model})
        return ImageGenerationResult(url="https://images.example/thumb.png", raw={})


def _seed(store: SQLiteStore) -> tuple[str, str]:
    user_id = store.create_user(auth_id="auth_owner", name="Owner").user_id
    video = store.create_video(user_id=user_id, title="Raw upload")
    store.update_video(video_id=video.video_id, user_id=user_id, changes={"description": "A trip to the alps"})
    return user_id, video.video_id


def _events(store: SQLiteStore, job_id: str) -> list[str]:
    page = store.list_job_events_page(job_id=job_id, limit=100, cursor=None)
    return [e["event_type"] for e in page["items"]]


def test_title_job_updates_video_and_records_trace() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        store = SQLiteStore(db_path)
        try:
            user_id, video_id = _seed(store)
            job = store.create_workflow_job(video_id=video_id, user_id=user_id, kind="title")

            llm = _StubLLM(content="  Alpine Adventure " + "x" * 200)
            worker = WorkflowWorker(db_path=db_path, config=load_app_config(), llm_factory=lambda: llm)

            assert worker.run_once(store) is True
            assert worker.run_once(store) is False

            row = store.get_video(video_id=video_id)
            assert row["title"].startswith("Alpine Adventure")
            assert len(row["title"]) <= 100
            assert "Raw upload" in llm.calls[0]["user"]
            assert "A trip to the alps" in llm.calls[0]["user"]

            job_row = store.get_workflow_job(job_id=job.job_id)
            assert job_row["status"] == "completed"
            assert job_row["started_at"] is not None
            assert job_row["ended_at"] is not None
            assert _events(store, job.job_id) == ["job_started", "job_completed"]
        finally:
            store.close()


def test_thumbnail_job_sets_generated_url() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        store = SQLiteStore(db_path)
        try:
            user_id, video_id = _seed(store)
            store.create_workflow_job(
                video_id=video_id, user_id=user_id, kind="thumbnail", prompt="Snowy mountains at dawn"
            )

            llm = _StubLLM()
            config = load_app_config()
            worker = WorkflowWorker(db_path=db_path, config=config, llm_factory=lambda: llm)
            assert worker.run_once(store) is True

            assert store.get_video(video_id=video_id)["thumbnail_url"] == "https://images.example/thumb.png"
            assert llm.calls[0]["size"] == config.workflows.image_size == "1792x1024"
        finally:
            store.close()


def test_provider_failure_marks_job_failed() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        store = SQLiteStore(db_path)
        try:
            user_id, video_id = _seed(store)
            job = store.create_workflow_job(video_id=video_id, user_id=user_id, kind="description")

            worker = WorkflowWorker(db_path=db_path, config=load_app_config(), llm_factory=lambda: _StubLLM(fail=True))
            assert worker.run_once(store) is True

            job_row = store.get_workflow_job(job_id=job.job_id)
            assert job_row["status"] == "failed"
            assert "provider unavailable" in job_row["error"]
            assert _events(store, job.job_id)[-1] == "job_failed"
            assert store.get_video(video_id=video_id)["description"] == "A trip to the alps"
        finally:
            store.close()


def test_job_for_video_owned_by_someone_else_fails() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = os.path.join(td, "app.db")
        store = SQLiteStore(db_path)
        try:
            _, video_id = _seed(store)
            other = store.create_user(auth_id="auth_other", name="Other").user_id
            job = store.create_workflow_job(video_id=video_id, user_id=other, kind="title")

            llm = _StubLLM(content="Stolen")
            worker = WorkflowWorker(db_path=db_path, config=load_app_config(), llm_factory=lambda: llm)
            worker.run_once(store)

            assert store.get_workflow_job(job_id=job.job_id)["error"] == "video_not_found"
            assert llm.calls == []
            evt = store.get_latest_job_event(job_id=job.job_id, event_type="job_failed")
            assert json.loads(evt["payload_json"])["error"] == "Video not found."
        finally:
            store.close()
