"""Optimistic per-product serial sequence allocation.

There is no counter row and no lock. The next sequence is derived from the
serial numbers already persisted for a product code, and the claim is made by
inserting a row whose serial embeds the candidate. The record store's unique
index on ``units.serial_number`` is the arbiter: a uniqueness violation means
another writer got there first, so re-read and try the next candidate.

Gaps are possible (a writer that read a stale max loses and moves on); reuse
is not, because the unique index makes a second row with the same serial
impossible.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from ..errors import AllocationExhausted, UniquenessViolation
from ..models import UNITS_TABLE
from ..protocols import RecordStore
from ..settings import DEFAULT_ALLOCATION_MAX_ATTEMPTS
from .serials import SerialIdFormatter

logger = logging.getLogger(__name__)

T = TypeVar('T')

Claim = Callable[[int], Awaitable[T]]

# Supabase default PostgREST max-rows.
DEFAULT_PAGE_SIZE = 1000


class SequenceAllocator:
    """Compare-and-retry sequence allocator backed by a unique index."""

    def __init__(
        self,
        store: RecordStore,
        *,
        formatter: SerialIdFormatter | None = None,
        max_attempts: int = DEFAULT_ALLOCATION_MAX_ATTEMPTS,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        if max_attempts < 1:
            raise ValueError('max_attempts must be >= 1')
        if page_size < 1:
            raise ValueError('page_size must be >= 1')
        self._store = store
        self._formatter = formatter or SerialIdFormatter()
        self._max_attempts = max_attempts
        self._page_size = page_size

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def current_max(self, product_code: str) -> int:
        """Highest sequence already embedded in a persisted serial (0 if none).

        Reads in ``id``-ordered pages until an empty page comes back; the
        server may cap a page below ``page_size`` (PostgREST ``max-rows``).
        """
        pattern = self._formatter.search_pattern(product_code)
        highest = 0
        offset = 0
        while True:
            rows = await self._store.select(
                UNITS_TABLE,
                {'serial_number': ('like', pattern)},
                columns='id,serial_number',
                order='id.asc',
                limit=self._page_size,
                offset=offset,
            )
            if not rows:
                return highest
            offset += len(rows)
            for row in rows:
                serial = row.get('serial_number')
                if not serial:
                    continue
                try:
                    code, sequence = self._formatter.parse(serial)
                except ValueError:
                    continue
                if code == product_code and sequence > highest:
                    highest = sequence

    async def allocate(
        self,
        product_code: str,
        claim: Claim[T] | None = None,
        *,
        start: int | None = None,
    ) -> int | tuple[int, T]:
        """Issue the next sequence for ``product_code``.

        Without ``claim`` this is a read: ``max + 1`` as of now, with no side
        effects and no guarantee a concurrent writer won't take it.

        With ``claim`` the candidate is materialized by ``claim(candidate)``,
        which must raise UniquenessViolation when the serial is taken. Returns
        ``(sequence, claim_result)``. ``start`` seeds the first candidate when
        the caller already read one.

        Raises:
            AllocationExhausted: every attempt lost the race.
        """
        candidate = start if start is not None else await self.current_max(product_code) + 1
        if claim is None:
            return candidate

        for attempt in range(1, self._max_attempts + 1):
            try:
                result = await claim(candidate)
            except UniquenessViolation:
                logger.info(
                    'Serial sequence %s for %s taken (attempt %d/%d)',
                    candidate,
                    product_code,
                    attempt,
                    self._max_attempts,
                )
                if attempt == self._max_attempts:
                    break
                # Stale reads must still make progress.
                reread = await self.current_max(product_code)
                candidate = max(reread + 1, candidate + 1)
                continue
            if attempt > 1:
                logger.info(
                    'Allocated sequence %s for %s after %d attempts',
                    candidate,
                    product_code,
                    attempt,
                )
            return candidate, result

        logger.warning(
            'Sequence allocation exhausted for %s after %d attempts',
            product_code,
            self._max_attempts,
        )
        raise AllocationExhausted(product_code, self._max_attempts)
