"""Supabase record/blob/catalog adapters over a mocked PostgREST."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from unit_factory.app.db import (
    SupabaseBlobStore,
    SupabaseClient,
    SupabaseOrderLinkService,
    SupabaseProductCatalog,
    SupabaseRecordStore,
)
from unit_factory.app.db.blob_store import split_ref
from unit_factory.app.db.errors import SupabaseError
from unit_factory.app.errors import PreconditionFailed, ProductNotFound, UniquenessViolation
from unit_factory.app.protocols import BlobStore, OrderLinkService, ProductCatalog, RecordStore


class Recorder:
    def __init__(self, *responses: httpx.Response) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def _client(recorder: Recorder) -> tuple[SupabaseClient, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return (
        SupabaseClient(
            supabase_url="https://example.supabase.co",
            service_role_key="svc-key",
            http_client=http_client,
        ),
        http_client,
    )


def test_adapters_satisfy_protocols():
    client = SupabaseClient(
        supabase_url="https://example.supabase.co",
        service_role_key="svc-key",
        http_client=httpx.AsyncClient(),
    )
    assert isinstance(SupabaseRecordStore(client), RecordStore)
    assert isinstance(SupabaseBlobStore(client, bucket="qr-codes"), BlobStore)
    assert isinstance(SupabaseProductCatalog(client), ProductCatalog)
    assert isinstance(SupabaseOrderLinkService(client), OrderLinkService)


class TestRecordStore:
    @pytest.mark.asyncio
    async def test_insert_unique_returns_row(self):
        rec = Recorder(httpx.Response(201, json=[{"id": "u1", "serial_number": "SV-PROD1-00001"}]))
        client, http_client = _client(rec)
        async with http_client:
            row = await SupabaseRecordStore(client).insert_unique(
                "units", ("serial_number",), {"serial_number": "SV-PROD1-00001"},
            )
        assert row["id"] == "u1"
        assert json.loads(rec.requests[0].content) == {"serial_number": "SV-PROD1-00001"}

    @pytest.mark.asyncio
    async def test_unique_violation_is_translated(self):
        rec = Recorder(httpx.Response(
            409, json={"code": "23505", "message": "duplicate key value violates unique constraint"},
        ))
        client, http_client = _client(rec)
        async with http_client:
            with pytest.raises(UniquenessViolation) as exc:
                await SupabaseRecordStore(client).insert_unique(
                    "unit_step_completions",
                    ("unit_id", "step_id"),
                    {"unit_id": "u1", "step_id": "s1", "completed_by": "t"},
                )
        assert exc.value.key == {"unit_id": "u1", "step_id": "s1"}

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        rec = Recorder(httpx.Response(500, json={"message": "boom"}))
        client, http_client = _client(rec)
        async with http_client:
            with pytest.raises(SupabaseError):
                await SupabaseRecordStore(client).insert_unique(
                    "units", ("serial_number",), {"serial_number": "x"},
                )

    @pytest.mark.asyncio
    async def test_conditional_update_filters_on_id_and_predicate(self):
        rec = Recorder(httpx.Response(200, json=[{"id": "u1", "status": "completed"}]))
        client, http_client = _client(rec)
        async with http_client:
            row = await SupabaseRecordStore(client).conditional_update(
                "units",
                "u1",
                {"status": ("neq", "completed")},
                {"status": "completed"},
            )
        assert row["status"] == "completed"
        request = rec.requests[0]
        assert request.method == "PATCH"
        assert dict(request.url.params) == {"id": "eq.u1", "status": "neq.completed"}

    @pytest.mark.asyncio
    async def test_empty_representation_means_precondition_failed(self):
        rec = Recorder(httpx.Response(200, json=[]))
        client, http_client = _client(rec)
        async with http_client:
            with pytest.raises(PreconditionFailed) as exc:
                await SupabaseRecordStore(client).conditional_update(
                    "units",
                    "u1",
                    {"production_started_at": ("is", None)},
                    {"production_started_at": "2026-01-01T00:00:00+00:00"},
                )
        assert exc.value.retryable is True
        assert rec.requests[0].url.params["production_started_at"] == "is.null"

    @pytest.mark.asyncio
    async def test_select_passes_through(self):
        rec = Recorder(httpx.Response(200, json=[{"step_id": "s1"}]))
        client, http_client = _client(rec)
        async with http_client:
            rows = await SupabaseRecordStore(client).select(
                "unit_step_completions", {"unit_id": ("eq", "u1")}, columns="step_id",
            )
        assert rows == [{"step_id": "s1"}]
        assert rec.requests[0].url.params["select"] == "step_id"


class TestBlobStore:
    @pytest.mark.asyncio
    async def test_put_then_delete(self):
        rec = Recorder(
            httpx.Response(200, json={"Key": "qr-codes/qr-codes/a1.png"}),
            httpx.Response(200, json=[{"name": "qr-codes/a1.png"}]),
        )
        client, http_client = _client(rec)
        store = SupabaseBlobStore(client, bucket="qr-codes")
        async with http_client:
            ref = await store.put(b"png", key="qr-codes/a1.png", content_type="image/png")
            await store.delete(ref)

        assert ref == "storage/v1/object/qr-codes/qr-codes/a1.png"
        delete = rec.requests[1]
        assert delete.method == "DELETE"
        assert delete.url.path == "/storage/v1/object/qr-codes"
        assert json.loads(delete.content) == {"prefixes": ["qr-codes/a1.png"]}

    @pytest.mark.asyncio
    async def test_delete_of_missing_blob_is_not_an_error(self):
        rec = Recorder(httpx.Response(404, json={"statusCode": "404", "error": "not_found"}))
        client, http_client = _client(rec)
        async with http_client:
            await SupabaseBlobStore(client, bucket="qr-codes").delete(
                "storage/v1/object/qr-codes/qr-codes/a1.png",
            )

    @pytest.mark.asyncio
    async def test_delete_failure_propagates(self):
        rec = Recorder(httpx.Response(500, json={"message": "storage down"}))
        client, http_client = _client(rec)
        async with http_client:
            with pytest.raises(SupabaseError):
                await SupabaseBlobStore(client, bucket="qr-codes").delete(
                    "storage/v1/object/qr-codes/qr-codes/a1.png",
                )

    def test_split_ref(self):
        assert split_ref("storage/v1/object/qr-codes/qr-codes/a1.png") == (
            "qr-codes", "qr-codes/a1.png",
        )
        with pytest.raises(ValueError):
            split_ref("https://elsewhere/a1.png")


class TestCatalog:
    @pytest.mark.asyncio
    async def test_resolve_product_code(self):
        rec = Recorder(httpx.Response(200, json=[{"product_code": "PROD1"}]))
        client, http_client = _client(rec)
        async with http_client:
            code = await SupabaseProductCatalog(client).resolve_product_code("p1")
        assert code == "PROD1"
        params: dict[str, Any] = dict(rec.requests[0].url.params)
        assert params["id"] == "eq.p1"
        assert params["select"] == "product_code"

    @pytest.mark.asyncio
    async def test_missing_product(self):
        rec = Recorder(httpx.Response(200, json=[]))
        client, http_client = _client(rec)
        async with http_client:
            with pytest.raises(ProductNotFound):
                await SupabaseProductCatalog(client).resolve_product_code("nope")

    @pytest.mark.asyncio
    async def test_link_order_sets_assigned_unit(self):
        rec = Recorder(httpx.Response(200, json=[{"id": "o1", "assigned_unit_id": "u1"}]))
        client, http_client = _client(rec)
        async with http_client:
            await SupabaseOrderLinkService(client).link_order_to_unit("o1", "u1")
        request = rec.requests[0]
        assert request.url.path == "/rest/v1/orders"
        assert json.loads(request.content) == {"assigned_unit_id": "u1"}

    @pytest.mark.asyncio
    async def test_link_missing_order_raises(self):
        rec = Recorder(httpx.Response(200, json=[]))
        client, http_client = _client(rec)
        async with http_client:
            with pytest.raises(LookupError):
                await SupabaseOrderLinkService(client).link_order_to_unit("o1", "u1")
