"""Supabase Storage blob store for QR artifacts.

References have the form ``storage/v1/object/{bucket}/{key}``, relative to
the Supabase project URL, so they stay valid across client configurations.
"""

from __future__ import annotations

import logging

from .errors import SupabaseNotFoundError
from .supabase_client import SupabaseClient

logger = logging.getLogger(__name__)

REF_PREFIX = "storage/v1/object/"


def split_ref(ref: str) -> tuple[str, str]:
    """Return ``(bucket, key)`` for a storage reference."""
    if not ref.startswith(REF_PREFIX):
        raise ValueError(f"not a storage object reference: {ref!r}")
    bucket, _, key = ref[len(REF_PREFIX):].partition("/")
    if not bucket or not key:
        raise ValueError(f"not a storage object reference: {ref!r}")
    return bucket, key


class SupabaseBlobStore:
    """Satisfies the ``BlobStore`` protocol from ``protocols.py``."""

    def __init__(self, client: SupabaseClient, *, bucket: str) -> None:
        if not bucket:
            raise ValueError("bucket is required")
        self._client = client
        self._bucket = bucket

    @property
    def bucket(self) -> str:
        return self._bucket

    async def put(self, data: bytes, *, key: str, content_type: str) -> str:
        return await self._client.upload_object(
            self._bucket, key, data, content_type=content_type,
        )

    async def delete(self, ref: str) -> None:
        bucket, key = split_ref(ref)
        try:
            await self._client.remove_objects(bucket, [key])
        except SupabaseNotFoundError:
            logger.info("Blob %s already absent", ref)
