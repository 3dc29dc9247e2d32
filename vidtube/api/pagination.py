from __future__ import annotations

import base64
import json
import math
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

from vidtube.api.errors import APIError
from vidtube.storage.feed_query import InvalidLimit, validate_limit


class CursorError(ValueError):
    pass


class _CursorShape(Protocol):
    field: str
    kind: str


@dataclass(frozen=True)
class Cursor:
    ordering_value: float | int
    item_id: str

    def as_tuple(self) -> tuple[float | int, str]:
        return (self.ordering_value, self.item_id)


def encode_cursor(cursor: Cursor, *, field: str) -> str:
    raw = json.dumps({"id": cursor.item_id, field: cursor.ordering_value}, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


_SQLITE_INT_MIN = -(2**63)
_SQLITE_INT_MAX = 2**63 - 1


def _coerce_value(value: Any, *, kind: str) -> float | int:
    # bool is an int subclass; never a valid ordering value.
    if isinstance(value, bool):
        raise CursorError("Invalid cursor")
    if kind == "number":
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if isinstance(value, int) and _SQLITE_INT_MIN <= value <= _SQLITE_INT_MAX:
            return value
        raise CursorError("Invalid cursor")
    if kind == "timestamp":
        if not isinstance(value, (int, float)):
            raise CursorError("Invalid cursor")
        try:
            ts = float(value)
        except OverflowError as e:
            raise CursorError("Invalid cursor") from e
        if not math.isfinite(ts):
            raise CursorError("Invalid cursor")
        return ts
    raise CursorError(f"Unknown cursor kind: {kind!r}")


def _validate_id(value: Any) -> str:
    if not isinstance(value, str):
        raise CursorError("Invalid cursor")
    try:
        return str(uuid.UUID(value))
    except ValueError as e:
        raise CursorError("Invalid cursor") from e


def decode_cursor(value: str, *, field: str, kind: str) -> Cursor:
    """Decode an opaque cursor produced by `encode_cursor` for the same ordering.

    The payload must carry a well-formed UUID under `id` and an ordering value
    of the expected kind under `field`.
    """
    s = (value or "").strip()
    if not s:
        raise CursorError("Empty cursor")

    # Add padding for base64 decoding.
    pad = "=" * ((4 - (len(s) % 4)) % 4)
    try:
        raw = base64.urlsafe_b64decode((s + pad).encode("ascii")).decode("utf-8")
        obj = json.loads(raw)
    except Exception as e:
        raise CursorError("Invalid cursor") from e

    if not isinstance(obj, dict) or "id" not in obj or field not in obj:
        raise CursorError("Invalid cursor")
    return Cursor(ordering_value=_coerce_value(obj[field], kind=kind), item_id=_validate_id(obj["id"]))


def parse_cursor_param(value: str | None, ordering: _CursorShape) -> tuple[float | int, str] | None:
    """Turn a `cursor` query parameter into the seek tuple a store page method expects."""
    if not value:
        return None
    try:
        return decode_cursor(value, field=ordering.field, kind=ordering.kind).as_tuple()
    except CursorError as e:
        raise APIError(status_code=400, code="invalid_argument", message=str(e)) from e


def finish_page(page: dict[str, Any], ordering: _CursorShape) -> dict[str, Any]:
    next_cursor = page.get("next_cursor")
    if next_cursor is not None:
        value, item_id = next_cursor
        page["next_cursor"] = encode_cursor(Cursor(ordering_value=value, item_id=str(item_id)), field=ordering.field)
    return page


def empty_page() -> dict[str, Any]:
    return {"items": [], "has_more": False, "next_cursor": None}


def page_params(limit: int, cursor: str | None, ordering: _CursorShape) -> tuple[int, tuple[float | int, str] | None]:
    """Validate `limit` and decode `cursor` up front, before any query runs."""
    try:
        limit = validate_limit(limit)
    except InvalidLimit as e:
        raise APIError(status_code=400, code="invalid_argument", message=str(e)) from e
    return limit, parse_cursor_param(cursor, ordering)
