"""Firmware install history and step hand-off."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from unit_factory.app.errors import DuplicateCompletion, RecordInsertFailed, StepNotFound
from unit_factory.app.inmemory import InMemoryRecordStore
from unit_factory.app.models import (
    COMPLETIONS_TABLE,
    FIRMWARE_HISTORY_TABLE,
    STEPS_TABLE,
    UNITS_TABLE,
    utcnow,
)
from unit_factory.app.production.firmware import FirmwareInstallationTracker
from unit_factory.app.production.step_engine import StepCompletionEngine

NOW = datetime(2026, 6, 1, 8, 30, tzinfo=timezone.utc)


@pytest.fixture
def store():
    s = InMemoryRecordStore()
    s.seed(UNITS_TABLE, [{
        'id': 'u1',
        'serial_number': 'SV-PROD1-00001',
        'product_id': 'p1',
        'variant_id': 'v1',
        'artifact_id': 'a1',
        'qr_code_url': 'storage/v1/object/qr-codes/qr-codes/a1.png',
        'status': 'unprovisioned',
        'created_by': 'tech-1',
    }])
    s.seed(STEPS_TABLE, [
        {'id': 'flash', 'product_id': 'p1', 'step_order': 1, 'name': 'Flash MCU'},
        {'id': 'qc', 'product_id': 'p1', 'step_order': 2, 'name': 'QC'},
    ])
    return s


@pytest.fixture
def tracker(store):
    engine = StepCompletionEngine(store, clock=lambda: NOW)
    return FirmwareInstallationTracker(store, engine, clock=lambda: NOW)


async def _install(tracker, **kwargs):
    return await tracker.record_install(
        unit_id='u1',
        device_type_category='mcu',
        firmware_id='fw-1.2.0',
        installed_by='tech-1',
        **kwargs,
    )


@pytest.mark.asyncio
async def test_install_appends_history_row(tracker, store):
    record = await _install(tracker, method='usb', notes='first flash')

    assert record.device_type_category == 'mcu'
    assert record.method == 'usb'
    assert record.installed_at == NOW
    (row,) = store.rows(FIRMWARE_HISTORY_TABLE)
    assert row['device_type_slug'] == 'mcu'
    assert row['installation_method'] == 'usb'
    assert store.rows(COMPLETIONS_TABLE) == []


@pytest.mark.asyncio
async def test_reflash_is_a_new_row(tracker, store):
    await _install(tracker)
    await _install(tracker)
    assert len(store.rows(FIRMWARE_HISTORY_TABLE)) == 2


@pytest.mark.asyncio
async def test_install_completes_linked_step(tracker, store):
    await _install(tracker, step_id='flash')

    (completion,) = store.rows(COMPLETIONS_TABLE)
    assert completion['step_id'] == 'flash'
    assert completion['completed_by'] == 'tech-1'
    unit_row = store.rows(UNITS_TABLE)[0]
    assert unit_row['production_started_at'] == NOW.isoformat()


@pytest.mark.asyncio
async def test_history_survives_step_failure(tracker, store):
    await _install(tracker, step_id='flash')

    with pytest.raises(DuplicateCompletion):
        await _install(tracker, step_id='flash')
    with pytest.raises(StepNotFound):
        await _install(tracker, step_id='missing')

    assert len(store.rows(FIRMWARE_HISTORY_TABLE)) == 3
    assert len(store.rows(COMPLETIONS_TABLE)) == 1


@pytest.mark.asyncio
async def test_history_write_failure(tracker, store):
    store.fail_inserts[FIRMWARE_HISTORY_TABLE] = RuntimeError('db down')
    with pytest.raises(RecordInsertFailed):
        await _install(tracker, step_id='flash')
    assert store.rows(COMPLETIONS_TABLE) == []


@pytest.mark.asyncio
async def test_default_clocks_stamp_utc(store):
    engine = StepCompletionEngine(store)
    tracker = FirmwareInstallationTracker(store, engine)

    record = await _install(tracker, step_id='flash')

    assert record.installed_at.tzinfo == timezone.utc
    (completion,) = store.rows(COMPLETIONS_TABLE)
    assert datetime.fromisoformat(completion['completed_at']).utcoffset() == timedelta(0)
    assert engine._clock is tracker._clock is utcnow
