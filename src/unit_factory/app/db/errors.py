"""Supabase client error hierarchy.

These errors stay small and dependency-free so repositories can translate
them into the engine's taxonomy without leaking httpx.Response objects (or
secrets) upward.
"""

from __future__ import annotations

from dataclasses import dataclass

# Postgres SQLSTATE for unique_violation, surfaced by PostgREST as ``code``.
UNIQUE_VIOLATION_SQLSTATE = "23505"


@dataclass(frozen=True, slots=True)
class SupabaseError(Exception):
    """Base Supabase error for PostgREST and Storage requests."""

    status_code: int
    message: str
    code: str | None = None
    details: str | None = None
    hint: str | None = None

    def __str__(self) -> str:
        bits: list[str] = [f"{type(self).__name__}(status={self.status_code})", self.message]
        if self.code:
            bits.append(f"code={self.code}")
        if self.details:
            bits.append(f"details={self.details}")
        return " ".join(bits)

    @property
    def is_unique_violation(self) -> bool:
        return self.code == UNIQUE_VIOLATION_SQLSTATE or (
            self.status_code == 409 and self.code is None
        )


class SupabaseAuthError(SupabaseError):
    """401/403 auth errors (bad key, RLS, expired session, etc.)."""


class SupabaseNotFoundError(SupabaseError):
    """404 errors.

    PostgREST returns these for an unknown table or route. Storage returns
    them for a missing object or bucket; blob deletes treat that as already
    removed.
    """


class SupabaseConflictError(SupabaseError):
    """409 conflicts.

    From PostgREST this is a unique violation (``code`` 23505). From Storage
    it means the object already exists and the upload did not ask to upsert;
    the body then carries ``statusCode`` 409 rather than a SQLSTATE, so
    ``is_unique_violation`` is false.
    """
