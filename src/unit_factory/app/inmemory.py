"""In-memory store implementations for local development and tests.

These are used when ENVIRONMENT=local. They satisfy the protocol interfaces
but store everything in dicts (no persistence across restarts).

Every public coroutine yields to the event loop once before touching state,
standing in for the network round trip, and then checks-and-writes without
yielding again. That mirrors the database: concurrent callers interleave at
I/O boundaries while each single-row write stays atomic.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from typing import Any, Iterable, Mapping, Sequence

from .errors import PreconditionFailed, ProductNotFound, UniquenessViolation
from .models import COMPLETIONS_TABLE, UNITS_TABLE, utcnow

# Mirrors the unique indexes in the production schema.
DEFAULT_UNIQUE_KEYS: Mapping[str, tuple[tuple[str, ...], ...]] = {
    UNITS_TABLE: (("serial_number",), ("artifact_id",)),
    COMPLETIONS_TABLE: (("unit_id", "step_id"),),
}


def _split_spec(spec: Any) -> tuple[str, Any]:
    if isinstance(spec, tuple) and len(spec) == 2:
        return str(spec[0]), spec[1]
    return "eq", spec


def _like_to_regex(pattern: str) -> re.Pattern[str]:
    escaped = re.escape(pattern).replace("%", ".*").replace("_", ".")
    return re.compile(f"^{escaped}$", re.DOTALL)


def _matches(row: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    if not filters:
        return True
    for column, spec in filters.items():
        op, expected = _split_spec(spec)
        actual = row.get(column)
        if op == "eq":
            ok = actual == expected
        elif op == "neq":
            ok = actual != expected
        elif op == "is":
            ok = actual is expected
        elif op == "in":
            ok = actual in set(expected)
        elif op == "like":
            ok = actual is not None and bool(_like_to_regex(expected).match(str(actual)))
        else:
            raise ValueError(f"unsupported filter op: {op!r}")
        if not ok:
            return False
    return True


def _sort_rows(rows: list[dict[str, Any]], order: str | None) -> list[dict[str, Any]]:
    if not order:
        return rows
    column, _, direction = order.partition(".")
    present = [r for r in rows if r.get(column) is not None]
    missing = [r for r in rows if r.get(column) is None]
    present.sort(key=lambda r: r[column], reverse=direction == "desc")
    return present + missing


class InMemoryRecordStore:
    """Dict-backed record store with unique-key enforcement.

    ``fail_inserts`` maps table name → exception to raise from the next
    inserts into that table (failure injection for saga tests).
    """

    def __init__(
        self,
        *,
        unique_keys: Mapping[str, Iterable[Sequence[str]]] = DEFAULT_UNIQUE_KEYS,
    ) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = {}
        self._unique_keys = {
            table: tuple(tuple(cols) for cols in keys)
            for table, keys in unique_keys.items()
        }
        self.fail_inserts: dict[str, Exception] = {}
        self.calls: list[tuple[str, str]] = []

    def seed(self, table: str, rows: Iterable[Mapping[str, Any]]) -> None:
        """Load fixture rows without constraint checks or yielding."""
        bucket = self._tables.setdefault(table, {})
        for row in rows:
            row_id = str(row.get("id") or uuid.uuid4())
            bucket[row_id] = {**row, "id": row_id}

    def rows(self, table: str) -> list[dict[str, Any]]:
        return [dict(r) for r in self._tables.get(table, {}).values()]

    def _check_unique(
        self,
        table: str,
        row: Mapping[str, Any],
        extra_keys: Sequence[str] = (),
    ) -> None:
        keys = list(self._unique_keys.get(table, ()))
        if extra_keys and tuple(extra_keys) not in keys:
            keys.append(tuple(extra_keys))
        existing = self._tables.get(table, {}).values()
        for cols in keys:
            candidate = {c: row.get(c) for c in cols}
            if any(v is None for v in candidate.values()):
                continue
            for other in existing:
                if all(other.get(c) == v for c, v in candidate.items()):
                    raise UniquenessViolation(table, candidate)

    def _write(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        row_id = str(row.get("id") or uuid.uuid4())
        stored = {
            "id": row_id,
            "created_at": utcnow().isoformat(),
            **row,
        }
        stored["id"] = row_id
        self._tables.setdefault(table, {})[row_id] = stored
        return dict(stored)

    async def insert_unique(
        self,
        table: str,
        key_columns: Sequence[str],
        row: Mapping[str, Any],
    ) -> dict[str, Any]:
        await asyncio.sleep(0)
        self.calls.append(("insert_unique", table))
        if table in self.fail_inserts:
            raise self.fail_inserts[table]
        self._check_unique(table, row, key_columns)
        return self._write(table, row)

    async def insert_append_only(
        self,
        table: str,
        row: Mapping[str, Any],
    ) -> dict[str, Any]:
        await asyncio.sleep(0)
        self.calls.append(("insert_append_only", table))
        if table in self.fail_inserts:
            raise self.fail_inserts[table]
        return self._write(table, row)

    async def conditional_update(
        self,
        table: str,
        row_id: str,
        predicate: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        await asyncio.sleep(0)
        self.calls.append(("conditional_update", table))
        current = self._tables.get(table, {}).get(row_id)
        if current is None or not _matches(current, predicate):
            raise PreconditionFailed(table, row_id, predicate)
        current.update(patch)
        current["updated_at"] = utcnow().isoformat()
        return dict(current)

    async def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        *,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        await asyncio.sleep(0)
        self.calls.append(("select", table))
        rows = [
            dict(r) for r in self._tables.get(table, {}).values()
            if _matches(r, filters)
        ]
        rows = _sort_rows(rows, order)
        if offset:
            rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        if columns != "*":
            wanted = [c.strip() for c in columns.split(",")]
            rows = [{c: r.get(c) for c in wanted} for r in rows]
        return rows


class InMemoryBlobStore:
    """Dict-backed blob store that tracks calls."""

    def __init__(
        self,
        *,
        bucket: str = "qr-codes",
        put_fails: bool = False,
        delete_fails: bool = False,
    ) -> None:
        self.bucket = bucket
        self.put_fails = put_fails
        self.delete_fails = delete_fails
        self.blobs: dict[str, bytes] = {}
        self.calls: list[tuple[str, str]] = []

    async def put(self, data: bytes, *, key: str, content_type: str) -> str:
        await asyncio.sleep(0)
        self.calls.append(("put", key))
        if self.put_fails:
            raise RuntimeError("blob upload failed")
        ref = f"storage/v1/object/{self.bucket}/{key}"
        self.blobs[ref] = bytes(data)
        return ref

    async def delete(self, ref: str) -> None:
        await asyncio.sleep(0)
        self.calls.append(("delete", ref))
        if self.delete_fails:
            raise RuntimeError("blob delete failed")
        self.blobs.pop(ref, None)


class InMemoryProductCatalog:
    def __init__(self, products: Mapping[str, str] | None = None) -> None:
        self._codes: dict[str, str] = dict(products or {})

    def add_product(self, product_id: str, product_code: str) -> None:
        self._codes[product_id] = product_code

    async def resolve_product_code(self, product_id: str) -> str:
        await asyncio.sleep(0)
        try:
            return self._codes[product_id]
        except KeyError:
            raise ProductNotFound(product_id) from None


class InMemoryOrderLinkService:
    def __init__(self, *, link_fails: bool = False) -> None:
        self.link_fails = link_fails
        self.links: dict[str, str] = {}

    async def link_order_to_unit(self, order_id: str, unit_id: str) -> None:
        await asyncio.sleep(0)
        if self.link_fails:
            raise RuntimeError("order link failed")
        self.links[order_id] = unit_id
