"""Keyset-paginated feed queries.

Every list endpoint is the same query shape:

    SELECT <columns> FROM <joins>
    WHERE <predicate> AND <seek(cursor)>
    ORDER BY <ordering value> <dir>, <id> <dir>
    LIMIT <limit + 1>

Feeds differ only in the predicate they declare and the ordering they use, so
`fetch_page` owns the "fetch one extra row, trim, derive the next cursor"
logic once.

Pages are exhaustive and non-overlapping as long as the matching rows do not
change between requests. A row whose ordering value changes after it was
passed may be skipped or returned twice; that is inherent to keyset paging.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any, Callable, Iterable, Mapping, Sequence, Union


MIN_PAGE_LIMIT = 1
MAX_PAGE_LIMIT = 100


class InvalidLimit(ValueError):
    pass


# --- Predicates


@dataclass(frozen=True)
class Equals:
    column: str
    value: Any

    def to_sql(self) -> tuple[str, list[Any]]:
        return f"{self.column} = ?", [self.value]


@dataclass(frozen=True)
class NotEquals:
    column: str
    value: Any

    def to_sql(self) -> tuple[str, list[Any]]:
        return f"{self.column} != ?", [self.value]


_RANGE_OPS = {"<", "<=", ">", ">="}


@dataclass(frozen=True)
class Range:
    column: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in _RANGE_OPS:
            raise ValueError(f"Unsupported range operator: {self.op!r}")

    def to_sql(self) -> tuple[str, list[Any]]:
        return f"{self.column} {self.op} ?", [self.value]


CASEFOLD_FUNCTION = "vt_casefold"


def _casefold(value: Any) -> Any:
    return value.casefold() if isinstance(value, str) else value


def register_functions(conn: sqlite3.Connection) -> None:
    """Install the SQL functions predicates rely on (SQLite's own case folding is ASCII-only)."""
    conn.create_function(CASEFOLD_FUNCTION, 1, _casefold, deterministic=True)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass(frozen=True)
class TextMatch:
    """Case-insensitive substring match, Unicode-aware via `register_functions`."""

    column: str
    text: str

    def to_sql(self) -> tuple[str, list[Any]]:
        pattern = f"%{_escape_like(_casefold(self.text))}%"
        return f"{CASEFOLD_FUNCTION}({self.column}) LIKE ? ESCAPE '\\'", [pattern]


@dataclass(frozen=True)
class InSubquery:
    column: str
    subquery: str
    params: tuple[Any, ...] = ()

    def to_sql(self) -> tuple[str, list[Any]]:
        return f"{self.column} IN ({self.subquery})", list(self.params)


@dataclass(frozen=True)
class Raw:
    sql: str
    params: tuple[Any, ...] = ()

    def to_sql(self) -> tuple[str, list[Any]]:
        return f"({self.sql})", list(self.params)


@dataclass(frozen=True)
class AllOf:
    parts: tuple["Predicate", ...] = ()

    def to_sql(self) -> tuple[str, list[Any]]:
        if not self.parts:
            return "1=1", []
        clauses: list[str] = []
        params: list[Any] = []
        for part in self.parts:
            sql, part_params = part.to_sql()
            clauses.append(sql)
            params.extend(part_params)
        return " AND ".join(clauses), params


Predicate = Union[Equals, NotEquals, Range, TextMatch, InSubquery, Raw, AllOf]


def all_of(*parts: Predicate | None) -> AllOf:
    """Conjunction of the given predicates; `None` entries are optional filters that were not requested."""
    return AllOf(parts=tuple(p for p in parts if p is not None))


# --- Ordering


@dataclass(frozen=True)
class Ordering:
    """Primary ordering value plus the id tie-break.

    `expression`/`id_expression` are the SQL used in both ORDER BY and the seek
    predicate. `field` names the ordering value in mapped items and in the
    cursor payload; `id_key` names the row id in mapped items.
    """

    field: str
    expression: str
    id_expression: str
    id_key: str
    kind: str = "timestamp"
    direction: str = "desc"

    def __post_init__(self) -> None:
        if self.kind not in {"timestamp", "number"}:
            raise ValueError(f"Unsupported ordering kind: {self.kind!r}")
        if self.direction not in {"asc", "desc"}:
            raise ValueError(f"Unsupported ordering direction: {self.direction!r}")

    def order_by_sql(self) -> str:
        d = self.direction.upper()
        return f"{self.expression} {d}, {self.id_expression} {d}"

    def seek(self, cursor: tuple[Any, str]) -> Raw:
        value, item_id = cursor
        op = "<" if self.direction == "desc" else ">"
        return Raw(
            f"{self.expression} {op} ? OR ({self.expression} = ? AND {self.id_expression} {op} ?)",
            (value, value, str(item_id)),
        )

    def cursor_from_item(self, item: Mapping[str, Any]) -> tuple[float | int, str]:
        value = item[self.field]
        value = int(value) if self.kind == "number" else float(value)
        return (value, str(item[self.id_key]))

    def compare(self, a: Mapping[str, Any], b: Mapping[str, Any]) -> int:
        """Python statement of the ORDER BY above, for checking pages against it.

        Returns a negative number when `a` sorts before `b` in this feed.
        """
        ka = self.cursor_from_item(a)
        kb = self.cursor_from_item(b)
        if ka == kb:
            return 0
        less = ka < kb
        if self.direction == "desc":
            return 1 if less else -1
        return -1 if less else 1

    def sort(self, items: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
        """Order mapped items exactly as `fetch_page` would return them."""
        return sorted(items, key=cmp_to_key(self.compare))


# --- Executor


def validate_limit(limit: int) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidLimit("limit must be an integer.")
    if limit < MIN_PAGE_LIMIT or limit > MAX_PAGE_LIMIT:
        raise InvalidLimit(f"limit must be in [{MIN_PAGE_LIMIT}..{MAX_PAGE_LIMIT}].")
    return limit


def fetch_page(
    conn: sqlite3.Connection,
    *,
    select_sql: str,
    from_sql: str,
    predicate: Predicate,
    ordering: Ordering,
    cursor: tuple[Any, str] | None,
    limit: int,
    row_mapper: Callable[[sqlite3.Row], dict[str, Any]],
    select_params: Sequence[Any] = (),
) -> dict[str, Any]:
    limit = validate_limit(limit)

    where = predicate if cursor is None else all_of(predicate, ordering.seek(cursor))
    where_sql, where_params = where.to_sql()

    rows = conn.execute(
        f"""
        SELECT {select_sql}
        FROM {from_sql}
        WHERE {where_sql}
        ORDER BY {ordering.order_by_sql()}
        LIMIT ?;
        """,
        (*select_params, *where_params, limit + 1),
    ).fetchall()

    has_more = len(rows) > limit
    if has_more:
        rows = rows[:limit]

    items = [row_mapper(r) for r in rows]

    next_cursor: tuple[float | int, str] | None = None
    if has_more and items:
        next_cursor = ordering.cursor_from_item(items[-1])

    return {"items": items, "has_more": has_more, "next_cursor": next_cursor}
