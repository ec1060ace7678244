"""Unit provisioning saga: serial, QR artifact, and unit record.

Orchestrates creation of a unit across two stores that cannot commit
together (blob store for the QR image, record store for the unit row):

  1. resolve product code              abort, nothing durable yet
  2. read next sequence                abort
  3. format serial                     abort (programmer error)
  4. mint artifact uuid                abort
  5. render QR artifact                abort
  6. upload artifact -> artifact_ref   abort, nothing to compensate
  7. insert unit row (serial retries)  compensate: delete artifact
  8. link order -> unit (optional)     non-fatal, logged

Step 7 runs inside the allocator's retry loop: a uniqueness violation on the
serial re-reads the max and re-inserts with the next candidate, reusing the
already-uploaded artifact (its payload is the uuid, not the serial). When
step 7 finally fails, the artifact is deleted; if that delete fails too the
artifact is reported as orphaned and the original failure is raised. At most
one orphan can exist per call and no partially-initialized unit is returned.
"""

from __future__ import annotations

import logging
import uuid
import warnings

from ..errors import (
    AllocationExhausted,
    ArtifactGenerationFailed,
    FactoryError,
    OrderLinkFailed,
    OrphanedArtifactWarning,
    RecordInsertFailed,
    UploadFailed,
)
from ..models import STATUS_UNPROVISIONED, UNITS_TABLE, Unit, utcnow
from ..protocols import (
    ArtifactGenerator,
    BlobStore,
    OrderLinkService,
    ProductCatalog,
    RecordStore,
)
from .allocator import SequenceAllocator
from .artifacts import ARTIFACT_CONTENT_TYPE, artifact_key
from .serials import SerialIdFormatter

logger = logging.getLogger(__name__)


class ProvisioningOrchestrator:
    """Create units with compensating rollback on partial failure."""

    def __init__(
        self,
        *,
        catalog: ProductCatalog,
        record_store: RecordStore,
        blob_store: BlobStore,
        artifact_generator: ArtifactGenerator,
        allocator: SequenceAllocator,
        formatter: SerialIdFormatter | None = None,
        order_links: OrderLinkService | None = None,
    ) -> None:
        self._catalog = catalog
        self._records = record_store
        self._blobs = blob_store
        self._artifacts = artifact_generator
        self._allocator = allocator
        self._formatter = formatter or SerialIdFormatter()
        self._order_links = order_links

    async def create_unit(
        self,
        *,
        product_id: str,
        variant_id: str,
        created_by: str,
        order_id: str | None = None,
    ) -> Unit:
        """Run the provisioning saga and return the persisted unit.

        Raises:
            ProductNotFound: step 1.
            ArtifactGenerationFailed: step 5.
            UploadFailed: step 6.
            AllocationExhausted: step 7 lost every serial race (artifact compensated).
            RecordInsertFailed: step 7 failed otherwise (artifact compensated).
        """
        logger.info('Creating unit for product %s', product_id)

        # Step 1
        product_code = await self._catalog.resolve_product_code(product_id)

        # Steps 2-3
        sequence = await self._allocator.allocate(product_code)
        serial = self._formatter.format(product_code, sequence)
        logger.info('Initial serial candidate %s', serial)

        # Step 4
        artifact_id = str(uuid.uuid4())

        # Step 5
        try:
            image = self._artifacts.generate(artifact_id)
        except ArtifactGenerationFailed:
            raise
        except Exception as exc:
            raise ArtifactGenerationFailed(artifact_id, str(exc)) from exc

        # Step 6
        key = artifact_key(artifact_id)
        try:
            artifact_ref = await self._blobs.put(
                image, key=key, content_type=ARTIFACT_CONTENT_TYPE,
            )
        except Exception as exc:
            raise UploadFailed(key, str(exc)) from exc
        logger.info('QR artifact uploaded: %s', artifact_ref)

        # Step 7
        async def insert_unit(candidate: int) -> dict:
            row = {
                'serial_number': self._formatter.format(product_code, candidate),
                'artifact_id': artifact_id,
                'product_id': product_id,
                'variant_id': variant_id,
                'order_id': order_id,
                'qr_code_url': artifact_ref,
                'status': STATUS_UNPROVISIONED,
                'is_completed': False,
                'created_by': created_by,
                'created_at': utcnow().isoformat(),
            }
            try:
                return await self._records.insert_unique(
                    UNITS_TABLE, ('serial_number',), row,
                )
            except FactoryError:
                raise
            except Exception as exc:
                raise RecordInsertFailed(UNITS_TABLE, str(exc)) from exc

        try:
            sequence, row = await self._allocator.allocate(
                product_code, insert_unit, start=sequence,
            )
        except (AllocationExhausted, RecordInsertFailed) as exc:
            await self._compensate_upload(artifact_ref, exc)
            raise
        except FactoryError as exc:
            await self._compensate_upload(artifact_ref, exc)
            raise RecordInsertFailed(UNITS_TABLE, str(exc)) from exc
        except Exception as exc:
            # Serial re-reads inside the loop hit the store too (timeouts, 5xx).
            await self._compensate_upload(artifact_ref, exc)
            raise RecordInsertFailed(UNITS_TABLE, str(exc)) from exc

        unit = Unit.from_row(row)
        logger.info('Unit created: %s (id=%s)', unit.serial_number, unit.id)

        # Step 8
        if order_id is not None:
            await self._link_order(order_id, unit.id)

        return unit

    async def _compensate_upload(self, artifact_ref: str, cause: Exception) -> None:
        logger.warning(
            'Unit insert failed (%s); deleting uploaded artifact %s',
            cause,
            artifact_ref,
        )
        try:
            await self._blobs.delete(artifact_ref)
        except Exception as exc:
            warning = OrphanedArtifactWarning(artifact_ref, str(exc))
            logger.warning('%s', warning)
            warnings.warn(warning, stacklevel=2)

    async def _link_order(self, order_id: str, unit_id: str) -> None:
        if self._order_links is None:
            logger.warning(
                'No order link service configured; order %s not linked to unit %s',
                order_id,
                unit_id,
            )
            return
        try:
            await self._order_links.link_order_to_unit(order_id, unit_id)
        except Exception as exc:
            failure = OrderLinkFailed(order_id, unit_id, str(exc))
            logger.warning('%s', failure)
            return
        logger.info('Order %s linked to unit %s', order_id, unit_id)
