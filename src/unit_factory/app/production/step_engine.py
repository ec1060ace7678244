"""Step completion engine with automatic production-complete transition.

Completions are an append-only log with one row per (unit, step), enforced by
the record store's unique index. The unit row carries two one-way
transitions, both applied as single-row conditional updates so concurrent
completions for the same unit never double-apply them:

  * first completion sets ``production_started_at`` (and, under the snapshot
    policy, freezes the product's step ids as the completion denominator);
  * the completion that leaves no required step pending moves the unit to
    ``completed``. The guard is the unit's status, not the count, so adding
    steps to a product after a unit completed cannot re-fire it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from ..errors import (
    DuplicateCompletion,
    PreconditionFailed,
    StepNotFound,
    UniquenessViolation,
    UnitNotFound,
)
from ..models import (
    COMPLETIONS_TABLE,
    STEPS_TABLE,
    UNITS_TABLE,
    ProductionStep,
    StepCompletion,
    StepCompletionResult,
    Unit,
    utcnow,
)
from ..protocols import RecordStore
from ..settings import COMPLETION_DENOMINATOR_LIVE, COMPLETION_DENOMINATOR_SNAPSHOT
from .state_machine import (
    COMPLETE_PREDICATE,
    START_PREDICATE,
    complete_patch,
    derive_state,
    pending_step_ids,
    start_patch,
)

logger = logging.getLogger(__name__)


class StepCompletionEngine:
    """Record step completions and drive the unit's production lifecycle."""

    def __init__(
        self,
        store: RecordStore,
        *,
        denominator: str = COMPLETION_DENOMINATOR_SNAPSHOT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if denominator not in (COMPLETION_DENOMINATOR_SNAPSHOT, COMPLETION_DENOMINATOR_LIVE):
            raise ValueError(f'unknown completion denominator: {denominator!r}')
        self._store = store
        self._denominator = denominator
        self._clock = clock

    async def complete_step(
        self,
        *,
        unit_id: str,
        step_id: str,
        completed_by: str,
        notes: str | None = None,
    ) -> StepCompletionResult:
        """Record one step completion for a unit.

        Raises:
            UnitNotFound: no such unit.
            StepNotFound: the step does not exist or belongs to another product.
            DuplicateCompletion: the step is already complete for this unit.
        """
        logger.info('Completing step %s for unit %s', step_id, unit_id)
        unit = await self._get_unit(unit_id)
        step = await self._get_step(step_id)
        if step is None or step.product_id != unit.product_id:
            raise StepNotFound(step_id, unit.product_id)

        row = {
            'unit_id': unit_id,
            'step_id': step_id,
            'completed_by': completed_by,
            'completed_at': self._clock().isoformat(),
            'notes': notes,
        }
        try:
            inserted = await self._store.insert_unique(
                COMPLETIONS_TABLE, ('unit_id', 'step_id'), row,
            )
        except UniquenessViolation:
            raise DuplicateCompletion(unit_id, step_id) from None
        completion = StepCompletion.from_row(inserted)

        if unit.production_started_at is None:
            unit = await self._mark_started(unit, completion.completed_at)

        required = await self._required_step_ids(unit)
        done = await self._completed_step_ids(unit_id)
        pending = pending_step_ids(done, required)
        completed_count = len(required) - len(pending)

        auto_completed = False
        if required and not pending and not unit.is_completed:
            logger.info('All %d steps complete for unit %s', len(required), unit_id)
            unit, auto_completed = await self._transition_complete(unit)

        return StepCompletionResult(
            unit=unit,
            completion=completion,
            state=derive_state(unit, done, required),
            completed_count=completed_count,
            total_steps=len(required),
            auto_completed=auto_completed,
            step_ids_pending=pending,
        )

    async def mark_complete(self, unit_id: str) -> Unit:
        """Force a unit to ``completed`` regardless of step progress.

        Idempotent: an already-completed unit is returned unchanged.
        """
        unit = await self._get_unit(unit_id)
        if unit.is_completed:
            logger.info('Unit %s already complete', unit_id)
            return unit
        unit, _ = await self._transition_complete(unit)
        return unit

    # ── Transitions ─────────────────────────────────────────────────

    async def _mark_started(self, unit: Unit, started_at: datetime) -> Unit:
        snapshot = None
        if self._denominator == COMPLETION_DENOMINATOR_SNAPSHOT:
            snapshot = [s.id for s in await self._product_steps(unit.product_id)]
        try:
            row = await self._store.conditional_update(
                UNITS_TABLE,
                unit.id,
                START_PREDICATE,
                start_patch(now=started_at, step_ids=snapshot),
            )
        except PreconditionFailed:
            # A concurrent completion started production first.
            return await self._get_unit(unit.id)
        logger.info('Production started for unit %s', unit.id)
        return Unit.from_row(row)

    async def _transition_complete(self, unit: Unit) -> tuple[Unit, bool]:
        try:
            row = await self._store.conditional_update(
                UNITS_TABLE,
                unit.id,
                COMPLETE_PREDICATE,
                complete_patch(now=self._clock()),
            )
        except PreconditionFailed:
            logger.info('Unit %s was completed by a concurrent writer', unit.id)
            return await self._get_unit(unit.id), False
        logger.info('Unit %s marked complete', unit.id)
        return Unit.from_row(row), True

    # ── Reads ───────────────────────────────────────────────────────

    async def _get_unit(self, unit_id: str) -> Unit:
        rows = await self._store.select(UNITS_TABLE, {'id': ('eq', unit_id)}, limit=1)
        if not rows:
            raise UnitNotFound(unit_id)
        return Unit.from_row(rows[0])

    async def _get_step(self, step_id: str) -> ProductionStep | None:
        rows = await self._store.select(STEPS_TABLE, {'id': ('eq', step_id)}, limit=1)
        return ProductionStep.from_row(rows[0]) if rows else None

    async def _product_steps(self, product_id: str) -> list[ProductionStep]:
        rows = await self._store.select(
            STEPS_TABLE,
            {'product_id': ('eq', product_id)},
            order='step_order.asc',
        )
        return [ProductionStep.from_row(r) for r in rows]

    async def _required_step_ids(self, unit: Unit) -> tuple[str, ...]:
        if (
            self._denominator == COMPLETION_DENOMINATOR_SNAPSHOT
            and unit.production_step_ids is not None
        ):
            return unit.production_step_ids
        return tuple(s.id for s in await self._product_steps(unit.product_id))

    async def _completed_step_ids(self, unit_id: str) -> set[str]:
        rows = await self._store.select(
            COMPLETIONS_TABLE,
            {'unit_id': ('eq', unit_id)},
            columns='step_id',
        )
        return {str(r['step_id']) for r in rows}
