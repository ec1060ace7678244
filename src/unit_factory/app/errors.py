"""Typed error taxonomy for unit provisioning and step completion.

Every failure a caller can observe is one of these classes. ``retryable``
tells the caller whether repeating the whole logical operation is safe
(``AllocationExhausted``, ``PreconditionFailed``) or whether the failure
needs a human (``ArtifactGenerationFailed``, ``DuplicateCompletion``).

Store adapters translate their transport errors into these types at the
adapter boundary so the engine never sees ``httpx`` or PostgREST details.
"""

from __future__ import annotations

from typing import Any, Mapping


class FactoryError(Exception):
    """Base class for all engine errors."""

    code: str = 'factory_error'
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        """Serializable form for transport adapters."""
        return {
            'code': self.code,
            'message': self.message,
            'retryable': self.retryable,
        }


# ── Catalog / lookups ────────────────────────────────────────────────


class ProductNotFound(FactoryError):
    code = 'product_not_found'

    def __init__(self, product_id: str) -> None:
        self.product_id = product_id
        super().__init__(f'product {product_id!r} not found')


class UnitNotFound(FactoryError):
    code = 'unit_not_found'

    def __init__(self, unit_id: str) -> None:
        self.unit_id = unit_id
        super().__init__(f'unit {unit_id!r} not found')


class StepNotFound(FactoryError):
    code = 'step_not_found'

    def __init__(self, step_id: str, product_id: str | None = None) -> None:
        self.step_id = step_id
        self.product_id = product_id
        detail = f'production step {step_id!r} not found'
        if product_id is not None:
            detail += f' for product {product_id!r}'
        super().__init__(detail)


# ── Provisioning saga ────────────────────────────────────────────────


class AllocationExhausted(FactoryError):
    """Serial allocation lost the uniqueness race on every attempt."""

    code = 'allocation_exhausted'
    retryable = True

    def __init__(self, product_code: str, attempts: int) -> None:
        self.product_code = product_code
        self.attempts = attempts
        super().__init__(
            f'could not allocate a serial for {product_code!r} '
            f'after {attempts} attempts'
        )


class ArtifactGenerationFailed(FactoryError):
    code = 'artifact_generation_failed'

    def __init__(self, identifier: str, reason: str) -> None:
        self.identifier = identifier
        self.reason = reason
        super().__init__(f'artifact generation failed for {identifier!r}: {reason}')


class UploadFailed(FactoryError):
    code = 'upload_failed'

    def __init__(self, key: str, reason: str) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f'artifact upload failed for {key!r}: {reason}')


class RecordInsertFailed(FactoryError):
    code = 'record_insert_failed'

    def __init__(self, table: str, reason: str) -> None:
        self.table = table
        self.reason = reason
        super().__init__(f'insert into {table!r} failed: {reason}')


class OrderLinkFailed(FactoryError):
    """Never raised to callers; built for the log record only."""

    code = 'order_link_failed'

    def __init__(self, order_id: str, unit_id: str, reason: str) -> None:
        self.order_id = order_id
        self.unit_id = unit_id
        self.reason = reason
        super().__init__(
            f'linking order {order_id!r} to unit {unit_id!r} failed: {reason}'
        )


class OrphanedArtifactWarning(UserWarning):
    """An uploaded artifact could not be removed after a failed insert."""

    def __init__(self, artifact_ref: str, reason: str) -> None:
        self.artifact_ref = artifact_ref
        self.reason = reason
        super().__init__(f'orphaned artifact {artifact_ref!r}: {reason}')


# ── Step completion ─────────────────────────────────────────────────


class DuplicateCompletion(FactoryError):
    code = 'duplicate_completion'

    def __init__(self, unit_id: str, step_id: str) -> None:
        self.unit_id = unit_id
        self.step_id = step_id
        super().__init__(
            f'step {step_id!r} is already complete for unit {unit_id!r}'
        )


# ── Store-level outcomes ────────────────────────────────────────────


class UniquenessViolation(FactoryError):
    """The record store rejected a write on a unique key."""

    code = 'uniqueness_violation'

    def __init__(self, table: str, key: Mapping[str, Any]) -> None:
        self.table = table
        self.key = dict(key)
        super().__init__(f'unique key {self.key!r} already exists in {table!r}')


class PreconditionFailed(FactoryError):
    """A conditional update found its predicate no longer true."""

    code = 'precondition_failed'
    retryable = True

    def __init__(self, table: str, row_id: str, predicate: Mapping[str, Any]) -> None:
        self.table = table
        self.row_id = row_id
        self.predicate = dict(predicate)
        super().__init__(
            f'conditional update of {table!r} row {row_id!r} '
            f'rejected: predicate {self.predicate!r} no longer holds'
        )
