from __future__ import annotations

import logging
import threading
import time
import traceback
from typing import Any, Callable

from vidtube.config.load_config import AppConfig, load_app_config
from vidtube.llm.openai_compat import OpenAICompatibleChatClient
from vidtube.storage.sqlite_store import SQLiteStore, default_db_path
from vidtube.utils.template import render_template


logger = logging.getLogger(__name__)


def _clip(text: str, max_chars: int) -> str:
    return text.strip()[:max_chars].strip()


class WorkflowWorker:
    """Single-threaded background worker that executes queued AI workflow jobs."""

    def __init__(
        self,
        *,
        db_path: str | None = None,
        config: AppConfig | None = None,
        llm_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._db_path = db_path or default_db_path()
        self._config = config or load_app_config()
        self._llm_factory = llm_factory or OpenAICompatibleChatClient
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "poll_interval_s": float(self._config.workflows.poll_interval_s),
            "db_path": str(self._db_path),
        }

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="vidtube-workflow-worker", daemon=True)
        self._thread.start()
        logger.info("Workflow worker started (db=%s)", self._db_path)

    def stop(self, *, timeout_s: float = 5.0) -> None:
        self._stop.set()
        t = self._thread
        if t is None:
            return
        t.join(timeout=timeout_s)
        logger.info("Workflow worker stopped")

    def run_once(self, store: SQLiteStore) -> bool:
        """Claim and execute one queued job. Returns False when the queue is empty."""
        claimed = store.claim_next_queued_job()
        if claimed is None:
            return False

        job_id = str(claimed["job_id"])
        try:
            self.execute_job(store, claimed)
        except Exception as e:
            # Never crash the worker loop.
            logger.exception("Workflow job %s failed", job_id)
            store.append_job_event(
                job_id,
                "job_failed",
                {"error": f"worker_unhandled_exception: {e}", "traceback": traceback.format_exc()},
            )
            store.update_job_status(job_id, "failed", error=str(e))
        return True

    def _run_loop(self) -> None:
        store = SQLiteStore(self._db_path)
        try:
            while not self._stop.is_set():
                if not self.run_once(store):
                    self._stop.wait(self._config.workflows.poll_interval_s)
        finally:
            store.close()

    def execute_job(self, store: SQLiteStore, job_row: Any) -> None:
        job_id = str(job_row["job_id"])
        kind = str(job_row["kind"])
        video_id = str(job_row["video_id"])
        user_id = str(job_row["user_id"])

        store.append_job_event(job_id, "job_started", {"kind": kind, "video_id": video_id})

        video = store.get_owned_video(video_id=video_id, user_id=user_id)
        if video is None:
            store.append_job_event(job_id, "job_failed", {"error": "Video not found."})
            store.update_job_status(job_id, "failed", error="video_not_found")
            return

        cfg = self._config.workflows
        started = time.monotonic()
        llm = self._llm_factory()

        if kind in {"title", "description"}:
            system = cfg.title_system_prompt if kind == "title" else cfg.description_system_prompt
            max_chars = cfg.title_max_chars if kind == "title" else cfg.description_max_chars
            user = render_template(
                cfg.user_prompt_template,
                {"title": video["title"], "description": video["description"]},
            )
            result = llm.chat(system=system, user=user, temperature=cfg.temperature)
            value = _clip(result.content, max_chars)
            if not value:
                store.append_job_event(job_id, "job_failed", {"error": "Model returned empty output."})
                store.update_job_status(job_id, "failed", error="empty_output")
                return
            store.update_video(video_id=video_id, user_id=user_id, changes={kind: value})
            output = {kind: value}
        elif kind == "thumbnail":
            prompt = str(job_row["prompt"] or "")
            image = llm.generate_image(prompt=prompt, size=cfg.image_size, model=cfg.image_model)
            store.set_video_thumbnail(video_id=video_id, thumbnail_url=image.url)
            output = {"thumbnail_url": image.url}
        else:
            store.append_job_event(job_id, "job_failed", {"error": f"Unknown workflow kind: {kind!r}"})
            store.update_job_status(job_id, "failed", error=f"Unknown kind: {kind}")
            return

        store.append_job_event(
            job_id,
            "job_completed",
            {"kind": kind, "output": output, "elapsed_s": round(time.monotonic() - started, 3)},
        )
        store.update_job_status(job_id, "completed")
        logger.info("Workflow job %s (%s) completed for video %s", job_id, kind, video_id)
