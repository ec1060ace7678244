"""SQL migrations for the unit factory's Supabase schema.

Files are named ``NNN_description.sql`` and applied in numeric order with
``supabase db push``. Every statement must be idempotent (``IF NOT EXISTS``
or an equivalent guard) so reruns are safe.
"""

from __future__ import annotations

import re
from pathlib import Path

_MIGRATION_RE = re.compile(r'^(\d{3})_.*\.sql$')

MIGRATIONS_DIR = Path(__file__).parent


def migration_paths(directory: Path = MIGRATIONS_DIR) -> list[Path]:
    """Migration files in application order."""
    found: list[tuple[int, Path]] = []
    for path in directory.iterdir():
        match = _MIGRATION_RE.match(path.name)
        if match:
            found.append((int(match.group(1)), path))
    return [p for _, p in sorted(found)]
