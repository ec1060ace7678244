"""Supabase adapters for the unit factory stores."""

from .blob_store import SupabaseBlobStore
from .catalog import SupabaseOrderLinkService, SupabaseProductCatalog
from .errors import (
    SupabaseAuthError,
    SupabaseConflictError,
    SupabaseError,
    SupabaseNotFoundError,
)
from .record_store import SupabaseRecordStore
from .supabase_client import SupabaseClient, encode_filters

__all__ = [
    "SupabaseAuthError",
    "SupabaseBlobStore",
    "SupabaseClient",
    "SupabaseConflictError",
    "SupabaseError",
    "SupabaseNotFoundError",
    "SupabaseOrderLinkService",
    "SupabaseProductCatalog",
    "SupabaseRecordStore",
    "encode_filters",
]
