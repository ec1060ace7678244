from __future__ import annotations

from typing import Any

import httpx
import pytest

from unit_factory.app.db.errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)
from unit_factory.app.db.supabase_client import SupabaseClient, encode_filters


def _client(handler, key: str = "svc-key") -> tuple[SupabaseClient, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = SupabaseClient(
        supabase_url="https://example.supabase.co/",
        service_role_key=key,
        http_client=http_client,
    )
    return client, http_client


class TestEncodeFilters:
    def test_bare_value_means_eq(self):
        assert encode_filters({"id": "u1"}) == {"id": "eq.u1"}

    def test_operators(self):
        params = encode_filters({
            "production_started_at": ("is", None),
            "status": ("neq", "completed"),
            "is_completed": ("eq", False),
            "serial_number": ("like", "SV-PROD1-%"),
            "step_id": ("in", ["s1", "s2"]),
        })
        assert params == {
            "production_started_at": "is.null",
            "status": "neq.completed",
            "is_completed": "eq.false",
            "serial_number": "like.SV-PROD1-%",
            "step_id": 'in.("s1","s2")',
        }

    def test_eq_none_rejected(self):
        with pytest.raises(ValueError):
            encode_filters({"order_id": ("eq", None)})


@pytest.mark.asyncio
async def test_select_builds_postgrest_query_with_service_headers():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["headers"] = dict(request.headers)
        return httpx.Response(200, json=[{"serial_number": "SV-PROD1-00001"}])

    client, http_client = _client(handler)
    async with http_client:
        rows = await client.select(
            "units",
            {"serial_number": ("like", "SV-PROD1-%")},
            columns="serial_number",
            order="created_at.desc",
            limit=5,
        )

    assert rows == [{"serial_number": "SV-PROD1-00001"}]
    assert seen["method"] == "GET"
    assert seen["path"] == "/rest/v1/units"
    assert seen["params"] == {
        "serial_number": "like.SV-PROD1-%",
        "select": "serial_number",
        "order": "created_at.desc",
        "limit": "5",
    }
    assert seen["headers"]["apikey"] == "svc-key"
    assert seen["headers"]["authorization"] == "Bearer svc-key"


@pytest.mark.asyncio
async def test_insert_and_update_ask_for_representation():
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201 if request.method == "POST" else 200, json=[{"id": "u1"}])

    client, http_client = _client(handler)
    async with http_client:
        await client.insert("units", {"serial_number": "SV-PROD1-00001"})
        await client.update("units", {"id": ("eq", "u1")}, {"status": "completed"})

    post, patch = seen
    assert post.method == "POST"
    assert post.headers["prefer"] == "return=representation"
    assert patch.method == "PATCH"
    assert patch.url.params["id"] == "eq.u1"
    assert patch.headers["prefer"] == "return=representation"


@pytest.mark.asyncio
async def test_update_without_filters_is_refused():
    client, http_client = _client(lambda r: httpx.Response(200, json=[]))
    async with http_client:
        with pytest.raises(ValueError):
            await client.update("units", {}, {"status": "completed"})


@pytest.mark.asyncio
async def test_upload_object_returns_storage_ref():
    seen: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = request.content
        return httpx.Response(200, json={"Key": "qr-codes/qr-codes/a1.png"})

    client, http_client = _client(handler)
    async with http_client:
        ref = await client.upload_object(
            "qr-codes", "qr-codes/a1.png", b"png", content_type="image/png",
        )

    assert ref == "storage/v1/object/qr-codes/qr-codes/a1.png"
    assert seen == {
        "path": "/storage/v1/object/qr-codes/qr-codes/a1.png",
        "content_type": "image/png",
        "body": b"png",
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "body", "error"),
    [
        (401, {"message": "unauthorized"}, SupabaseAuthError),
        (404, {"message": "relation does not exist"}, SupabaseNotFoundError),
        (409, {"code": "23505", "message": "duplicate key"}, SupabaseConflictError),
        (500, {"message": "boom"}, SupabaseError),
    ],
)
async def test_error_statuses_map_to_typed_errors(status, body, error):
    client, http_client = _client(
        lambda r: httpx.Response(status, json=body), key="TOPSECRET",
    )
    async with http_client:
        with pytest.raises(error) as exc:
            await client.select("units")

    assert exc.value.status_code == status
    assert "TOPSECRET" not in str(exc.value)


@pytest.mark.asyncio
async def test_unique_violation_detected_from_sqlstate():
    client, http_client = _client(
        lambda r: httpx.Response(409, json={"code": "23505", "message": "dup"}),
    )
    async with http_client:
        with pytest.raises(SupabaseConflictError) as exc:
            await client.insert("units", {"serial_number": "x"})
    assert exc.value.is_unique_violation


@pytest.mark.asyncio
async def test_storage_existing_object_conflict_is_not_a_unique_violation():
    client, http_client = _client(
        lambda r: httpx.Response(
            409,
            json={"statusCode": "409", "error": "Duplicate", "message": "The resource already exists"},
        ),
    )
    async with http_client:
        with pytest.raises(SupabaseConflictError) as exc:
            await client.upload_object(
                "qr-codes", "qr-codes/a1.png", b"png", content_type="image/png",
            )

    assert exc.value.code == "409"
    assert exc.value.message == "The resource already exists"
    assert not exc.value.is_unique_violation


def test_missing_credentials_rejected():
    with pytest.raises(ValueError):
        SupabaseClient(supabase_url="", service_role_key="k")
    with pytest.raises(ValueError):
        SupabaseClient(supabase_url="https://x.supabase.co", service_role_key="")
