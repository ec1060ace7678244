"""Store and collaborator protocol interfaces for dependency injection.

These protocols define the contracts that concrete implementations (InMemory
for local dev and tests, Supabase for non-local) must satisfy. The factory
accepts any implementation that matches these protocols.

Filters and predicates share one shape: ``{column: (op, value)}`` where op is
one of ``eq``, ``neq``, ``is``, ``in``, ``like``. A bare value means ``eq``.
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

Predicate = Mapping[str, Any]


@runtime_checkable
class ProductCatalog(Protocol):
    """Product metadata lookups."""

    async def resolve_product_code(self, product_id: str) -> str: ...


@runtime_checkable
class RecordStore(Protocol):
    """Single-row atomic operations against the durable record store.

    No multi-row transactions are assumed.
    """

    async def insert_unique(
        self,
        table: str,
        key_columns: Sequence[str],
        row: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Insert ``row``; raise UniquenessViolation if ``key_columns`` collide."""
        ...

    async def conditional_update(
        self,
        table: str,
        row_id: str,
        predicate: Predicate,
        patch: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Apply ``patch`` only if ``predicate`` holds; else PreconditionFailed."""
        ...

    async def insert_append_only(
        self,
        table: str,
        row: Mapping[str, Any],
    ) -> dict[str, Any]: ...

    async def select(
        self,
        table: str,
        filters: Predicate | None = None,
        *,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]: ...


@runtime_checkable
class BlobStore(Protocol):
    """Binary artifact storage."""

    async def put(self, data: bytes, *, key: str, content_type: str) -> str:
        """Store ``data`` under ``key`` and return a durable reference."""
        ...

    async def delete(self, ref: str) -> None:
        """Remove the blob at ``ref``. Missing blobs are not an error."""
        ...


@runtime_checkable
class OrderLinkService(Protocol):
    """Best-effort order → unit association."""

    async def link_order_to_unit(self, order_id: str, unit_id: str) -> None: ...


@runtime_checkable
class ArtifactGenerator(Protocol):
    """Pure identifier → artifact bytes rendering."""

    def generate(self, identifier: str) -> bytes: ...
