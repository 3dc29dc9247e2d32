from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from vidtube.api.errors import (
    APIError,
    api_error_handler,
    conflict_error_handler,
    invalid_limit_handler,
    unhandled_error_handler,
    validation_error_handler,
)
from vidtube.api.ratelimit import SlidingWindowLimiter
from vidtube.config.load_config import load_app_config
from vidtube.runtime.worker import WorkflowWorker
from vidtube.storage.feed_query import InvalidLimit
from vidtube.storage.sqlite_store import ConflictError, SQLiteStore

from .routers.categories import router as categories_router
from .routers.comments import router as comments_router
from .routers.health import router as health_router
from .routers.jobs import router as jobs_router
from .routers.playlists import router as playlists_router
from .routers.search import router as search_router
from .routers.studio import router as studio_router
from .routers.subscriptions import router as subscriptions_router
from .routers.users import router as users_router
from .routers.videos import router as videos_router


logger = logging.getLogger(__name__)


def _cors_origins_from_env() -> list[str]:
    raw = os.getenv("VIDTUBE_CORS_ORIGINS", "").strip()
    if not raw:
        # Safe local defaults: allow typical dev ports.
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    return [o.strip() for o in raw.split(",") if o.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return default


def create_app() -> FastAPI:
    config = load_app_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN202
        # Reconcile jobs left 'running' by a previous process.
        store = SQLiteStore()
        try:
            reconciled = store.reconcile_running_jobs()
            app.state.reconciled_running_jobs = int(reconciled)
        finally:
            store.close()
        if reconciled:
            logger.warning("Marked %d interrupted workflow job(s) as failed", reconciled)

        # Start a single background worker (single-instance assumption).
        if _env_bool("VIDTUBE_ENABLE_WORKER", True):
            worker = WorkflowWorker(config=config)
            worker.start()
            app.state.workflow_worker = worker
        try:
            yield
        finally:
            worker = getattr(app.state, "workflow_worker", None)
            if worker is not None:
                worker.stop()

    app = FastAPI(title="vidtube API", version="0.1.0", lifespan=lifespan)
    app.state.config = config
    app.state.rate_limiter = SlidingWindowLimiter(
        max_requests=config.ratelimit.max_requests,
        window_s=config.ratelimit.window_s,
    )

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(InvalidLimit, invalid_limit_handler)
    app.add_exception_handler(ConflictError, conflict_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # CORS (for the web client in dev / local deployments).
    origins = _cors_origins_from_env()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api/v1", tags=["system"])
    app.include_router(categories_router, prefix="/api/v1", tags=["categories"])
    app.include_router(users_router, prefix="/api/v1", tags=["users"])
    app.include_router(videos_router, prefix="/api/v1", tags=["videos"])
    app.include_router(search_router, prefix="/api/v1", tags=["search"])
    app.include_router(studio_router, prefix="/api/v1", tags=["studio"])
    app.include_router(comments_router, prefix="/api/v1", tags=["comments"])
    app.include_router(subscriptions_router, prefix="/api/v1", tags=["subscriptions"])
    app.include_router(playlists_router, prefix="/api/v1", tags=["playlists"])
    app.include_router(jobs_router, prefix="/api/v1", tags=["jobs"])

    return app


app = create_app()
