"""Durable, gap-free sequence counter for participation token ids."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from motor.motor_asyncio import AsyncIOMotorCollection

logger = logging.getLogger(__name__)

PARTICIPATION_TOKEN = "participation_token"


class Reservation:
    """A sequence number held under the counter lock until committed."""

    def __init__(self, value: int):
        self.value = value
        self.committed = False

    def commit(self) -> None:
        self.committed = True


class SequenceCounter:
    """Process-wide counter.

    ``reserve()`` holds the lock while the caller uses the number, and the
    counter only advances on ``commit()``, so concurrent holders never see
    the same value and an unused reservation leaves no gap.
    """

    def __init__(
        self,
        collection: AsyncIOMotorCollection | None = None,
        name: str = PARTICIPATION_TOKEN,
        start: int = 0,
    ):
        self._collection = collection
        self._name = name
        self._value = start
        self._lock = asyncio.Lock()

    @property
    def value(self) -> int:
        """Next number to be issued."""
        return self._value

    async def load(self) -> int:
        if self._collection is not None:
            doc = await self._collection.find_one({"_id": self._name})
            if doc:
                self._value = int(doc["value"])
        logger.info(f"Sequence '{self._name}' starts at {self._value}")
        return self._value

    async def _persist(self) -> None:
        if self._collection is None:
            return
        await self._collection.update_one(
            {"_id": self._name},
            {"$max": {"value": self._value}},
            upsert=True,
        )

    @asynccontextmanager
    async def reserve(self) -> AsyncIterator[Reservation]:
        async with self._lock:
            reservation = Reservation(self._value)
            try:
                yield reservation
            finally:
                # Committed even when the body raises afterwards
                if reservation.committed:
                    self._value += 1
                    try:
                        await self._persist()
                    except Exception as e:
                        # In-memory value stays authoritative for this process.
                        logger.error(f"Failed to persist sequence '{self._name}': {e}")

    async def next_sequence(self) -> int:
        async with self.reserve() as reservation:
            reservation.commit()
            return reservation.value
