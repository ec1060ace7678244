"""Schema migration contents and idempotency."""

from __future__ import annotations

import re

import pytest

from unit_factory.migrations import MIGRATIONS_DIR, migration_paths


@pytest.fixture(scope='module')
def schema_sql() -> str:
    return '\n'.join(p.read_text() for p in migration_paths())


def test_migrations_are_discovered_in_order():
    names = [p.name for p in migration_paths()]
    assert names
    assert names == sorted(names)
    assert all(p.parent == MIGRATIONS_DIR for p in migration_paths())


@pytest.mark.parametrize(
    'index',
    [
        r'UNIQUE INDEX IF NOT EXISTS \w+\s+ON public\.units\(serial_number\)',
        r'UNIQUE INDEX IF NOT EXISTS \w+\s+ON public\.units\(artifact_id\)',
        r'UNIQUE INDEX IF NOT EXISTS \w+\s+ON public\.unit_step_completions\(unit_id, step_id\)',
    ],
)
def test_arbitrating_unique_indexes_exist(schema_sql, index):
    assert re.search(index, schema_sql)


@pytest.mark.parametrize('column', ['artifact_id', 'production_step_ids'])
def test_unit_columns_are_added(schema_sql, column):
    assert re.search(rf'ADD COLUMN IF NOT EXISTS {column}\b', schema_sql)


def test_statements_are_idempotent(schema_sql):
    for pattern in (r'CREATE (UNIQUE )?INDEX', r'CREATE TABLE', r'ADD COLUMN'):
        for match in re.finditer(pattern, schema_sql):
            tail = schema_sql[match.end():match.end() + 40]
            assert tail.lstrip().startswith('IF NOT EXISTS'), tail
