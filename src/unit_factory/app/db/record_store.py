"""Supabase-backed record store.

Implements the RecordStore protocol over PostgREST. The unique indexes on
``units.serial_number``, ``units.artifact_id`` and
``unit_step_completions(unit_id, step_id)`` do the arbitration; this adapter
only translates their 409/23505 responses into UniquenessViolation.

Conditional updates are a single PATCH whose filter is ``id = row_id`` AND
the predicate. PostgREST applies filter and write in one statement, so an
empty representation means the predicate did not hold (or the row is gone).

The columns and unique indexes this relies on are created by
``unit_factory/migrations/001_unit_factory_schema.sql``.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..errors import PreconditionFailed, UniquenessViolation
from .errors import SupabaseError
from .supabase_client import SupabaseClient


class SupabaseRecordStore:
    """Satisfies the ``RecordStore`` protocol from ``protocols.py``."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def insert_unique(
        self,
        table: str,
        key_columns: Sequence[str],
        row: Mapping[str, Any],
    ) -> dict[str, Any]:
        try:
            rows = await self._client.insert(table, row)
        except SupabaseError as exc:
            if exc.is_unique_violation:
                raise UniquenessViolation(
                    table, {c: row.get(c) for c in key_columns},
                ) from exc
            raise
        return rows[0]

    async def insert_append_only(
        self,
        table: str,
        row: Mapping[str, Any],
    ) -> dict[str, Any]:
        rows = await self._client.insert(table, row)
        return rows[0]

    async def conditional_update(
        self,
        table: str,
        row_id: str,
        predicate: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        if "id" in predicate:
            raise ValueError("predicate must not constrain 'id'; pass row_id")
        rows = await self._client.update(
            table,
            filters={"id": ("eq", row_id), **predicate},
            data=patch,
        )
        if not rows:
            raise PreconditionFailed(table, row_id, predicate)
        return rows[0]

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
        return await self._client.select(
            table,
            filters=filters,
            columns=columns,
            order=order,
            limit=limit,
            offset=offset,
        )
