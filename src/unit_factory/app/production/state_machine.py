"""Production progress state derived from step completions.

States:
  not_started -> in_progress -> complete

State is never stored; it is derived from the append-only completion log and
the unit row. The two unit-row transitions (production start, production
complete) are expressed here as predicate/patch pairs for single-row
conditional updates, so concurrent writers cannot double-apply them:

  start:    production_started_at IS NULL  -> set started_at (+ step snapshot)
  complete: status != 'completed'          -> set status, completed_at
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from ..models import STATUS_COMPLETED, Unit

NOT_STARTED = 'not_started'
IN_PROGRESS = 'in_progress'
COMPLETE = 'complete'

START_PREDICATE: dict[str, Any] = {'production_started_at': ('is', None)}
COMPLETE_PREDICATE: dict[str, Any] = {'status': ('neq', STATUS_COMPLETED)}


def derive_state(
    unit: Unit,
    completed_step_ids: Iterable[str],
    required_step_ids: Iterable[str],
) -> str:
    """Classify a unit's production progress."""
    if unit.is_completed:
        return COMPLETE
    done = set(completed_step_ids)
    if not done:
        return NOT_STARTED
    required = set(required_step_ids)
    if required and required <= done:
        return COMPLETE
    return IN_PROGRESS


def pending_step_ids(
    completed_step_ids: Iterable[str],
    required_step_ids: Iterable[str],
) -> tuple[str, ...]:
    """Required steps without a completion, in the given order."""
    done = set(completed_step_ids)
    return tuple(s for s in required_step_ids if s not in done)


def start_patch(
    *,
    now: datetime,
    step_ids: Iterable[str] | None,
) -> dict[str, Any]:
    _require_aware_datetime(now)
    patch: dict[str, Any] = {'production_started_at': now.isoformat()}
    if step_ids is not None:
        patch['production_step_ids'] = list(step_ids)
    return patch


def complete_patch(*, now: datetime) -> dict[str, Any]:
    _require_aware_datetime(now)
    return {
        'status': STATUS_COMPLETED,
        'is_completed': True,
        'production_completed_at': now.isoformat(),
    }


def _require_aware_datetime(value: datetime) -> None:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError('now must be timezone-aware')
