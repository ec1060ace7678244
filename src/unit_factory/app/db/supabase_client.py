"""Async Supabase client: PostgREST rows and Storage objects.

This is the single point of Supabase HTTP interaction for the record and blob
store adapters. Every call is one HTTP request; no retries happen here (a
timeout surfaces as an httpx error and follows the caller's failure path).
"""

from __future__ import annotations

import json
from typing import Any, Mapping

import httpx

from .errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)

Filters = Mapping[str, tuple[str, Any] | Any]

# Module-level shared client for connection pooling in app runtimes.
_shared_async_client: httpx.AsyncClient | None = None


def _get_shared_async_client() -> httpx.AsyncClient:
    global _shared_async_client
    if _shared_async_client is None:
        _shared_async_client = httpx.AsyncClient()
    return _shared_async_client


def _encode_value(op: str, value: Any) -> str:
    if op == "is":
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        raise ValueError("is operator supports only None/True/False")
    if op == "in":
        if isinstance(value, (str, bytes)) or not hasattr(value, "__iter__"):
            raise ValueError("in operator requires an iterable of values")
        # PostgREST wants quoted strings inside in.(...)
        items = [json.dumps(v) if isinstance(v, str) else str(v) for v in value]
        return f"({','.join(items)})"
    if value is None:
        raise ValueError(f"{op} does not support None; use op='is' with value=None")
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def encode_filters(filters: Filters | None) -> dict[str, str]:
    """Translate ``{column: (op, value)}`` into PostgREST query params."""
    params: dict[str, str] = {}
    for column, spec in (filters or {}).items():
        op, value = spec if isinstance(spec, tuple) and len(spec) == 2 else ("eq", spec)
        params[str(column)] = f"{op}.{_encode_value(str(op), value)}"
    return params


_ERROR_BY_STATUS: dict[int, type[SupabaseError]] = {
    401: SupabaseAuthError,
    403: SupabaseAuthError,
    404: SupabaseNotFoundError,
    409: SupabaseConflictError,
}


def _raise_for_error(resp: httpx.Response) -> None:
    if resp.status_code < 400:
        return

    message = resp.text
    code = details = hint = None
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error") or message
        code = payload.get("code")
        details = payload.get("details")
        hint = payload.get("hint")
        # Storage reports the HTTP-ish status inside the body.
        if code is None and payload.get("statusCode"):
            code = str(payload["statusCode"])

    err_cls = _ERROR_BY_STATUS.get(resp.status_code, SupabaseError)
    # Never include request headers: they carry the service-role key.
    raise err_cls(
        status_code=resp.status_code,
        message=str(message),
        code=None if code is None else str(code),
        details=None if details is None else str(details),
        hint=None if hint is None else str(hint),
    )


class SupabaseClient:
    """Minimal async Supabase client (service role)."""

    def __init__(
        self,
        *,
        supabase_url: str,
        service_role_key: str,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        if not supabase_url:
            raise ValueError("supabase_url is required")
        if not service_role_key:
            raise ValueError("service_role_key is required")

        self._base_url = supabase_url.rstrip("/")
        self._service_role_key = service_role_key
        self._timeout_seconds = float(timeout_seconds)
        self._client = http_client or _get_shared_async_client()

    @property
    def rest_url(self) -> str:
        return f"{self._base_url}/rest/v1"

    @property
    def storage_url(self) -> str:
        return f"{self._base_url}/storage/v1"

    def _headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Any = None,
        content: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        resp = await self._client.request(
            method,
            url,
            params=params,
            json=json_body,
            content=content,
            headers=self._headers(headers),
            timeout=self._timeout_seconds,
        )
        _raise_for_error(resp)
        return resp

    @staticmethod
    def _rows(resp: httpx.Response, verb: str) -> list[dict[str, Any]]:
        payload = resp.json()
        if not isinstance(payload, list):
            raise SupabaseError(status_code=500, message=f"expected list response from {verb}")
        return payload

    # ── PostgREST ───────────────────────────────────────────────────

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        params = encode_filters(filters)
        params["select"] = columns
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(int(limit))
        if offset:
            params["offset"] = str(int(offset))
        resp = await self._send("GET", f"{self.rest_url}/{table}", params=params)
        return self._rows(resp, "select")

    async def insert(self, table: str, row: Mapping[str, Any]) -> list[dict[str, Any]]:
        resp = await self._send(
            "POST",
            f"{self.rest_url}/{table}",
            json_body=dict(row),
            headers={"Prefer": "return=representation"},
        )
        return self._rows(resp, "insert")

    async def update(
        self,
        table: str,
        filters: Filters,
        data: Mapping[str, Any],
    ) -> list[dict[str, Any]]:
        """PATCH rows matching ``filters``; the filter is evaluated atomically
        with the write, so an empty result means nothing matched."""
        if not filters:
            raise ValueError("update requires at least one filter")
        resp = await self._send(
            "PATCH",
            f"{self.rest_url}/{table}",
            params=encode_filters(filters),
            json_body=dict(data),
            headers={"Prefer": "return=representation"},
        )
        return self._rows(resp, "update")

    # ── Storage ─────────────────────────────────────────────────────

    async def upload_object(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = False,
    ) -> str:
        """Upload ``data`` and return its ``storage/v1/object/{bucket}/{path}`` ref."""
        await self._send(
            "POST",
            f"{self.storage_url}/object/{bucket}/{path}",
            content=data,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true" if upsert else "false",
            },
        )
        return f"storage/v1/object/{bucket}/{path}"

    async def remove_objects(self, bucket: str, paths: list[str]) -> list[dict[str, Any]]:
        resp = await self._send(
            "DELETE",
            f"{self.storage_url}/object/{bucket}",
            json_body={"prefixes": paths},
        )
        payload = resp.json()
        return payload if isinstance(payload, list) else []
