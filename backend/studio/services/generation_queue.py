"""Per-segment generation slots.

A segment has one mutable active-revision pointer, so at most one generation
per segment may be in flight. Later requests for the same segment either wait
(served by priority, then arrival) or are rejected, depending on policy.
Different segments never block each other.
"""

import asyncio
import itertools
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Literal
from uuid import UUID

from studio.exceptions import SegmentBusyError
from studio.schemas.generation import GenerationQueueItem

logger = logging.getLogger(__name__)

ConcurrencyPolicy = Literal["queue", "reject"]


class GenerationQueue:
    def __init__(self, policy: ConcurrencyPolicy = "queue"):
        self.policy = policy
        self._in_flight: dict[UUID, GenerationQueueItem] = {}
        self._waiting: list[tuple[int, int, GenerationQueueItem]] = []  # (-priority, seq, item)
        self._seq = itertools.count()
        self._condition = asyncio.Condition()

    def is_busy(self, segment_id: UUID) -> bool:
        return segment_id in self._in_flight or any(
            item.segment_id == segment_id for _, _, item in self._waiting
        )

    def check_admission(self, segment_id: UUID) -> None:
        """Under the reject policy, refuse work for a segment that already has some."""
        if self.policy == "reject" and self.is_busy(segment_id):
            raise SegmentBusyError(str(segment_id))

    def pending(self) -> list[GenerationQueueItem]:
        return [item for _, _, item in sorted(self._waiting, key=lambda entry: entry[:2])]

    def in_flight(self) -> list[GenerationQueueItem]:
        return list(self._in_flight.values())

    def _is_next(self, entry: tuple[int, int, GenerationQueueItem]) -> bool:
        segment_id = entry[2].segment_id
        if segment_id in self._in_flight:
            return False
        same_segment = [e for e in self._waiting if e[2].segment_id == segment_id]
        return min(same_segment, key=lambda e: e[:2]) is entry

    @asynccontextmanager
    async def slot(self, item: GenerationQueueItem) -> AsyncIterator[GenerationQueueItem]:
        """Hold the segment's single in-flight slot for the duration of the block."""
        self.check_admission(item.segment_id)
        entry = (-item.priority, next(self._seq), item)
        async with self._condition:
            self._waiting.append(entry)
            try:
                if not self._is_next(entry):
                    logger.info(
                        f"Revision {item.revision_id} waiting for segment {item.segment_id} "
                        f"({len(self._waiting)} pending)"
                    )
                await self._condition.wait_for(lambda: self._is_next(entry))
            finally:
                self._waiting.remove(entry)
                # A cancelled waiter may have been ahead of others for this segment.
                self._condition.notify_all()
            self._in_flight[item.segment_id] = item

        try:
            yield item
        finally:
            async with self._condition:
                self._in_flight.pop(item.segment_id, None)
                self._condition.notify_all()
