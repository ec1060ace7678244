"""Unit factory composition root.

The create_factory() factory is the single entry point for building a
UnitFactory. It validates settings and injects store/collaborator
implementations via dependency injection.

Usage:
    # Local development
    from unit_factory.app import create_factory, FactorySettings
    factory = create_factory(FactorySettings())

    # Non-local (Supabase adapters built from settings)
    settings = FactorySettings.from_env()
    factory = create_factory(settings, **build_supabase_dependencies(settings))

    # Testing (full DI control)
    factory = create_factory(settings, record_store=store, blob_store=blobs, ...)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from .models import FirmwareInstallRecord, StepCompletionResult, Unit
from .observability.logging import bind_operation
from .production.firmware import FirmwareInstallationTracker
from .production.step_engine import StepCompletionEngine
from .protocols import (
    ArtifactGenerator,
    BlobStore,
    OrderLinkService,
    ProductCatalog,
    RecordStore,
)
from .provisioning.allocator import SequenceAllocator
from .provisioning.artifacts import QrArtifactGenerator
from .provisioning.orchestrator import ProvisioningOrchestrator
from .provisioning.serials import SerialIdFormatter
from .settings import FactorySettings

logger = logging.getLogger(__name__)

_DEPENDENCY_NAMES = (
    "catalog",
    "record_store",
    "blob_store",
    "order_links",
    "artifact_generator",
)


@dataclass(frozen=True)
class FactoryDependencies:
    """Container for all injected store/collaborator instances."""

    catalog: ProductCatalog
    record_store: RecordStore
    blob_store: BlobStore
    order_links: OrderLinkService
    artifact_generator: ArtifactGenerator


def _build_artifact_generator(settings: FactorySettings) -> QrArtifactGenerator:
    return QrArtifactGenerator(
        app_base_url=settings.app_base_url,
        size_px=settings.qr_size_px,
        mark_path=Path(settings.qr_mark_path) if settings.qr_mark_path else None,
    )


def _build_inmemory_deps(settings: FactorySettings) -> FactoryDependencies:
    """Construct all-InMemory dependencies for local development."""
    from .inmemory import (
        InMemoryBlobStore,
        InMemoryOrderLinkService,
        InMemoryProductCatalog,
        InMemoryRecordStore,
    )

    return FactoryDependencies(
        catalog=InMemoryProductCatalog(),
        record_store=InMemoryRecordStore(),
        blob_store=InMemoryBlobStore(bucket=settings.qr_bucket),
        order_links=InMemoryOrderLinkService(),
        artifact_generator=_build_artifact_generator(settings),
    )


def build_supabase_dependencies(
    settings: FactorySettings,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> dict[str, Any]:
    """Build Supabase-backed collaborators as keyword args for create_factory()."""
    from .db import (
        SupabaseBlobStore,
        SupabaseClient,
        SupabaseOrderLinkService,
        SupabaseProductCatalog,
        SupabaseRecordStore,
    )

    client = SupabaseClient(
        supabase_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
        http_client=http_client,
        timeout_seconds=settings.supabase_timeout_seconds,
    )
    return {
        "catalog": SupabaseProductCatalog(client),
        "record_store": SupabaseRecordStore(client),
        "blob_store": SupabaseBlobStore(client, bucket=settings.qr_bucket),
        "order_links": SupabaseOrderLinkService(client),
        "artifact_generator": _build_artifact_generator(settings),
    }


class UnitFactory:
    """Provisioning and production-tracking operations over one set of stores.

    Each call runs under its own operation id so its log lines correlate.
    """

    def __init__(self, settings: FactorySettings, deps: FactoryDependencies) -> None:
        self.settings = settings
        self.deps = deps
        formatter = SerialIdFormatter(
            prefix=settings.serial_prefix,
            pad_width=settings.serial_pad_width,
        )
        self.allocator = SequenceAllocator(
            deps.record_store,
            formatter=formatter,
            max_attempts=settings.allocation_max_attempts,
        )
        self.provisioning = ProvisioningOrchestrator(
            catalog=deps.catalog,
            record_store=deps.record_store,
            blob_store=deps.blob_store,
            artifact_generator=deps.artifact_generator,
            allocator=self.allocator,
            formatter=formatter,
            order_links=deps.order_links,
        )
        self.steps = StepCompletionEngine(
            deps.record_store,
            denominator=settings.completion_denominator,
        )
        self.firmware = FirmwareInstallationTracker(deps.record_store, self.steps)

    async def create_unit(
        self,
        *,
        product_id: str,
        variant_id: str,
        created_by: str,
        order_id: str | None = None,
    ) -> Unit:
        with bind_operation("create_unit"):
            return await self.provisioning.create_unit(
                product_id=product_id,
                variant_id=variant_id,
                created_by=created_by,
                order_id=order_id,
            )

    async def complete_step(
        self,
        *,
        unit_id: str,
        step_id: str,
        completed_by: str,
        notes: str | None = None,
    ) -> StepCompletionResult:
        with bind_operation("complete_step"):
            return await self.steps.complete_step(
                unit_id=unit_id,
                step_id=step_id,
                completed_by=completed_by,
                notes=notes,
            )

    async def mark_complete(self, unit_id: str) -> Unit:
        with bind_operation("mark_complete"):
            return await self.steps.mark_complete(unit_id)

    async def record_install(
        self,
        *,
        unit_id: str,
        device_type_category: str,
        firmware_id: str,
        installed_by: str,
        method: str | None = None,
        notes: str | None = None,
        step_id: str | None = None,
    ) -> FirmwareInstallRecord:
        with bind_operation("record_install"):
            return await self.firmware.record_install(
                unit_id=unit_id,
                device_type_category=device_type_category,
                firmware_id=firmware_id,
                installed_by=installed_by,
                method=method,
                notes=notes,
                step_id=step_id,
            )


def create_factory(
    settings: FactorySettings | None = None,
    *,
    catalog: ProductCatalog | None = None,
    record_store: RecordStore | None = None,
    blob_store: BlobStore | None = None,
    order_links: OrderLinkService | None = None,
    artifact_generator: ArtifactGenerator | None = None,
) -> UnitFactory:
    """Create a configured UnitFactory.

    Args:
        settings: Factory settings. Defaults to local-dev settings.
        catalog..artifact_generator: Collaborator overrides. When None,
            local mode uses InMemory implementations (and the QR generator
            built from settings). Non-local mode raises if a store is missing.

    Raises:
        ValueError: If settings validation fails.
        ValueError: If a non-local environment is missing collaborators.
    """
    if settings is None:
        settings = FactorySettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Factory settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    given = {
        "catalog": catalog,
        "record_store": record_store,
        "blob_store": blob_store,
        "order_links": order_links,
        "artifact_generator": artifact_generator,
    }

    if settings.is_local:
        defaults = _build_inmemory_deps(settings)
        deps = FactoryDependencies(**{
            name: given[name] if given[name] is not None else getattr(defaults, name)
            for name in _DEPENDENCY_NAMES
        })
    else:
        if given["artifact_generator"] is None:
            given["artifact_generator"] = _build_artifact_generator(settings)
        missing = [name for name in _DEPENDENCY_NAMES if given[name] is None]
        if missing:
            raise ValueError(
                f"Non-local environment ({settings.environment}) requires all "
                f"stores to be explicitly provided. Missing: {', '.join(missing)}"
            )
        deps = FactoryDependencies(**given)

    logger.info(
        "Unit factory ready (environment=%s, denominator=%s)",
        settings.environment,
        settings.completion_denominator,
    )
    return UnitFactory(settings, deps)
