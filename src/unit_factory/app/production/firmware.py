"""Firmware installation bookkeeping.

Installs are an append-only history (reflashing the same device category is
a new row, never an update). When an install fulfils a production step, the
step completion is recorded after the history row is durable. The two writes
are not atomic: if the step completion fails, the install history stays and
the step error reaches the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from ..errors import RecordInsertFailed
from ..models import FIRMWARE_HISTORY_TABLE, FirmwareInstallRecord, utcnow
from ..protocols import RecordStore
from .step_engine import StepCompletionEngine

logger = logging.getLogger(__name__)


class FirmwareInstallationTracker:
    def __init__(
        self,
        store: RecordStore,
        step_engine: StepCompletionEngine,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._steps = step_engine
        self._clock = clock

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
        """Append an install event, then complete ``step_id`` if given.

        Raises:
            RecordInsertFailed: the history row could not be written.
            Any StepCompletionEngine error, after the history row is written.
        """
        logger.info(
            'Recording firmware %s (%s) install for unit %s',
            firmware_id,
            device_type_category,
            unit_id,
        )
        row = {
            'unit_id': unit_id,
            'device_type_slug': device_type_category,
            'firmware_id': firmware_id,
            'installed_at': self._clock().isoformat(),
            'installed_by': installed_by,
            'installation_method': method,
            'notes': notes,
        }
        try:
            inserted = await self._store.insert_append_only(FIRMWARE_HISTORY_TABLE, row)
        except Exception as exc:
            raise RecordInsertFailed(FIRMWARE_HISTORY_TABLE, str(exc)) from exc
        record = FirmwareInstallRecord.from_row(inserted)

        if step_id is not None:
            logger.info('Completing firmware step %s for unit %s', step_id, unit_id)
            try:
                await self._steps.complete_step(
                    unit_id=unit_id,
                    step_id=step_id,
                    completed_by=installed_by,
                    notes=notes,
                )
            except Exception:
                logger.warning(
                    'Firmware install %s recorded but step %s completion failed',
                    record.id,
                    step_id,
                )
                raise

        return record
