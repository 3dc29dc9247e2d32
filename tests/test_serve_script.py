from __future__ import annotations

import importlib.util
from pathlib import Path
from types import ModuleType
from typing import Any

import pytest


def _load_serve() -> ModuleType:
    path = Path(__file__).resolve().parents[1] / "scripts" / "serve.py"
    spec = importlib.util.spec_from_file_location("vidtube_serve_script", path)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_serve_defaults_come_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VIDTUBE_HOST", "0.0.0.0")
    monkeypatch.setenv("VIDTUBE_PORT", "9001")
    monkeypatch.setenv("VIDTUBE_RELOAD", "yes")
    monkeypatch.setenv("VIDTUBE_ENABLE_WORKER", "0")
    serve = _load_serve()

    args = serve.parse_args([])
    assert (args.host, args.port, args.reload, args.with_worker) == ("0.0.0.0", 9001, True, False)

    args = serve.parse_args(["--port", "8080", "--no-reload", "--with-worker"])
    assert (args.port, args.reload, args.with_worker) == (8080, False, True)


def test_serve_passes_wiring_to_the_app(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    # Recorded so they are restored after main() rewrites them.
    monkeypatch.setenv("VIDTUBE_ENABLE_WORKER", "1")
    monkeypatch.setenv("VIDTUBE_SQLITE_PATH", str(tmp_path / "unused.db"))
    serve = _load_serve()

    calls: list[tuple[str, dict[str, Any]]] = []
    monkeypatch.setattr(serve.uvicorn, "run", lambda target, **kw: calls.append((target, kw)))

    db_path = str(tmp_path / "serve.db")
    assert serve.main(["--no-with-worker", "--db-path", db_path, "--log-level", "DEBUG"]) == 0

    target, kwargs = calls[0]
    assert target == "vidtube.api.app:app"
    assert kwargs["log_level"] == "debug"
    assert serve.os.environ["VIDTUBE_ENABLE_WORKER"] == "0"
    assert serve.os.environ["VIDTUBE_SQLITE_PATH"] == db_path
