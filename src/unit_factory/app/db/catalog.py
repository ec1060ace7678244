"""Supabase-backed product catalog and order linking."""

from __future__ import annotations

from ..errors import ProductNotFound
from ..models import ORDERS_TABLE, PRODUCTS_TABLE
from .supabase_client import SupabaseClient


class SupabaseProductCatalog:
    """Satisfies the ``ProductCatalog`` protocol from ``protocols.py``."""

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def resolve_product_code(self, product_id: str) -> str:
        rows = await self._client.select(
            PRODUCTS_TABLE,
            filters={"id": ("eq", product_id)},
            columns="product_code",
            limit=1,
        )
        if not rows or not rows[0].get("product_code"):
            raise ProductNotFound(product_id)
        return str(rows[0]["product_code"])


class SupabaseOrderLinkService:
    """Points ``orders.assigned_unit_id`` at the new unit.

    Satisfies the ``OrderLinkService`` protocol from ``protocols.py``.
    """

    def __init__(self, client: SupabaseClient) -> None:
        self._client = client

    async def link_order_to_unit(self, order_id: str, unit_id: str) -> None:
        rows = await self._client.update(
            ORDERS_TABLE,
            filters={"id": ("eq", order_id)},
            data={"assigned_unit_id": unit_id},
        )
        if not rows:
            raise LookupError(f"order {order_id!r} not found")
