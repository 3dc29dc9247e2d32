from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any


class ConfigError(RuntimeError):
    pass


def _as_int(value: Any, *, key: str) -> int:
    try:
        return int(value)
    except Exception as e:
        raise ConfigError(f"Invalid int for {key}: {value!r}") from e


def _as_str(value: Any, *, key: str) -> str:
    if value is None:
        raise ConfigError(f"Missing required config key: {key}")
    return str(value)


def _as_float(value: Any, *, key: str) -> float:
    try:
        return float(value)
    except Exception as e:
        raise ConfigError(f"Invalid float for {key}: {value!r}") from e


def _as_positive_int(value: Any, *, key: str) -> int:
    n = _as_int(value, key=key)
    if n <= 0:
        raise ConfigError(f"Invalid {key}: must be > 0, got {n}")
    return n


def _require_placeholder(value: Any, *, key: str, name: str) -> str:
    s = _as_str(value, key=key).strip()
    if "{{" + name + "}}" not in s.replace(" ", ""):
        raise ConfigError(f"Invalid {key}: must reference {{{{{name}}}}}")
    return s


@dataclass(frozen=True)
class MediaConfig:
    thumbnail_url_template: str
    preview_url_template: str


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_s: float


@dataclass(frozen=True)
class WorkflowConfig:
    poll_interval_s: float
    temperature: float
    title_max_chars: int
    description_max_chars: int
    image_model: str
    image_size: str
    title_system_prompt: str
    description_system_prompt: str
    user_prompt_template: str


@dataclass(frozen=True)
class AppConfig:
    media: MediaConfig
    ratelimit: RateLimitConfig
    workflows: WorkflowConfig


def default_config_path() -> Path:
    env = os.getenv("VIDTUBE_CONFIG_PATH")
    if env:
        return Path(env).expanduser().resolve()
    # Repo layout: `<repo>/vidtube/config/load_config.py` -> `<repo>/config/default.toml`.
    return (Path(__file__).resolve().parents[2] / "config" / "default.toml").resolve()


def load_app_config(path: Path | None = None) -> AppConfig:
    cfg_path = path or default_config_path()
    if not cfg_path.exists():
        raise ConfigError(f"Config file not found: {cfg_path}")

    try:
        import tomllib  # py3.11+
    except Exception as e:
        raise ConfigError("tomllib is required (Python 3.11+).") from e

    try:
        raw = tomllib.loads(cfg_path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {cfg_path}: {e}") from e

    media = raw.get("media", {})
    ratelimit = raw.get("ratelimit", {})
    workflows = raw.get("workflows", {})

    window_s = _as_float(ratelimit.get("window_s"), key="ratelimit.window_s")
    if window_s <= 0:
        raise ConfigError(f"Invalid ratelimit.window_s: must be > 0, got {window_s}")

    return AppConfig(
        media=MediaConfig(
            thumbnail_url_template=_require_placeholder(
                media.get("thumbnail_url_template"), key="media.thumbnail_url_template", name="playback_id"
            ),
            preview_url_template=_require_placeholder(
                media.get("preview_url_template"), key="media.preview_url_template", name="playback_id"
            ),
        ),
        ratelimit=RateLimitConfig(
            max_requests=_as_positive_int(ratelimit.get("max_requests"), key="ratelimit.max_requests"),
            window_s=window_s,
        ),
        workflows=WorkflowConfig(
            poll_interval_s=_as_float(workflows.get("poll_interval_s"), key="workflows.poll_interval_s"),
            temperature=_as_float(workflows.get("temperature"), key="workflows.temperature"),
            title_max_chars=_as_positive_int(workflows.get("title_max_chars"), key="workflows.title_max_chars"),
            description_max_chars=_as_positive_int(
                workflows.get("description_max_chars"), key="workflows.description_max_chars"
            ),
            image_model=os.getenv("IMAGE_MODEL")
            or _as_str(workflows.get("image_model"), key="workflows.image_model"),
            image_size=_as_str(workflows.get("image_size"), key="workflows.image_size"),
            title_system_prompt=_as_str(
                workflows.get("title_system_prompt"), key="workflows.title_system_prompt"
            ).strip(),
            description_system_prompt=_as_str(
                workflows.get("description_system_prompt"), key="workflows.description_system_prompt"
            ).strip(),
            user_prompt_template=_as_str(
                workflows.get("user_prompt_template"), key="workflows.user_prompt_template"
            ).strip(),
        ),
    )
