"""Row-level records for units, steps, completions, and firmware installs.

Rows travel through the record store as plain dicts (PostgREST shape, ISO-8601
timestamps). These dataclasses are the typed view handed back to callers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

UNITS_TABLE = 'units'
PRODUCTS_TABLE = 'products'
ORDERS_TABLE = 'orders'
STEPS_TABLE = 'production_steps'
COMPLETIONS_TABLE = 'unit_step_completions'
FIRMWARE_HISTORY_TABLE = 'unit_firmware_history'

STATUS_UNPROVISIONED = 'unprovisioned'
STATUS_FACTORY_PROVISIONED = 'factory_provisioned'
STATUS_USER_PROVISIONED = 'user_provisioned'
STATUS_COMPLETED = 'completed'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace('Z', '+00:00'))


@dataclass
class Unit:
    """A tracked physical product instance."""

    id: str
    serial_number: str
    product_id: str
    variant_id: str
    artifact_id: str
    artifact_ref: str
    created_by: str
    status: str = STATUS_UNPROVISIONED
    order_id: str | None = None
    owner_id: str | None = None
    production_started_at: datetime | None = None
    production_completed_at: datetime | None = None
    production_step_ids: tuple[str, ...] | None = None
    created_at: datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> Unit:
        step_ids = row.get('production_step_ids')
        return cls(
            id=str(row['id']),
            serial_number=row['serial_number'],
            product_id=str(row['product_id']),
            variant_id=str(row['variant_id']),
            artifact_id=str(row['artifact_id']),
            artifact_ref=row['qr_code_url'],
            created_by=str(row['created_by']),
            status=row.get('status') or STATUS_UNPROVISIONED,
            order_id=row.get('order_id'),
            owner_id=row.get('consumer_user_id'),
            production_started_at=parse_timestamp(row.get('production_started_at')),
            production_completed_at=parse_timestamp(row.get('production_completed_at')),
            production_step_ids=tuple(step_ids) if step_ids is not None else None,
            created_at=parse_timestamp(row.get('created_at')),
        )


@dataclass(frozen=True, slots=True)
class ProductionStep:
    id: str
    product_id: str
    step_order: int
    name: str

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> ProductionStep:
        return cls(
            id=str(row['id']),
            product_id=str(row['product_id']),
            step_order=int(row['step_order']),
            name=row.get('name', ''),
        )


@dataclass(frozen=True, slots=True)
class StepCompletion:
    id: str
    unit_id: str
    step_id: str
    completed_at: datetime
    completed_by: str
    notes: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> StepCompletion:
        return cls(
            id=str(row['id']),
            unit_id=str(row['unit_id']),
            step_id=str(row['step_id']),
            completed_at=parse_timestamp(row['completed_at']),
            completed_by=str(row['completed_by']),
            notes=row.get('notes'),
        )


@dataclass(frozen=True, slots=True)
class FirmwareInstallRecord:
    """One entry in a unit's append-only firmware history."""

    id: str
    unit_id: str
    device_type_category: str
    firmware_id: str
    installed_at: datetime
    installed_by: str
    method: str | None = None
    notes: str | None = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> FirmwareInstallRecord:
        return cls(
            id=str(row['id']),
            unit_id=str(row['unit_id']),
            device_type_category=row['device_type_slug'],
            firmware_id=str(row['firmware_id']),
            installed_at=parse_timestamp(row['installed_at']),
            installed_by=str(row['installed_by']),
            method=row.get('installation_method'),
            notes=row.get('notes'),
        )


@dataclass(frozen=True, slots=True)
class StepCompletionResult:
    """Outcome of ``complete_step``.

    ``auto_completed`` is True only for the call whose conditional update
    moved the unit to ``completed``.
    """

    unit: Unit
    completion: StepCompletion
    state: str
    completed_count: int
    total_steps: int
    auto_completed: bool = False
    step_ids_pending: tuple[str, ...] = field(default_factory=tuple)
