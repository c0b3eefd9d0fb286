"""Durable record of bet resolutions submitted by this service.

One document per bet id. A resolution moves ``submitted -> resolved ->
settled``; ``settled`` means every participant has a settlement journal
entry (or was skipped as foreign). Anything short of ``settled`` is picked
up again at the start of the next tick, so a resolve that timed out, or a
fan-out interrupted by a failed read, is never lost.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import BaseModel, Field
from pymongo import ASCENDING

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResolutionState(str, Enum):
    SUBMITTED = "submitted"
    RESOLVED = "resolved"
    SETTLED = "settled"


class BetResolution(BaseModel):
    bet_id: int
    state: ResolutionState = ResolutionState.SUBMITTED
    tx_hash: str | None = None  # last submitted resolve tx, None if none is outstanding
    error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def awaiting_receipt(self) -> bool:
        return self.state == ResolutionState.SUBMITTED and self.tx_hash is not None

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> BetResolution:
        return cls(**{k: v for k, v in doc.items() if k != "_id"})


class ResolutionJournal:
    def __init__(self, collection: AsyncIOMotorCollection):
        self._collection = collection

    async def ensure_indexes(self) -> None:
        await self._collection.create_index("bet_id", unique=True)
        await self._collection.create_index("state")

    async def find(self, bet_id: int) -> BetResolution | None:
        doc = await self._collection.find_one({"bet_id": bet_id})
        return BetResolution.from_document(doc) if doc else None

    async def _set(self, bet_id: int, upsert: bool = False, **fields: Any) -> None:
        now = _utcnow()
        fields["updated_at"] = now
        update: dict[str, Any] = {"$set": fields}
        if upsert:
            update["$setOnInsert"] = {"created_at": now}
        await self._collection.update_one({"bet_id": bet_id}, update, upsert=upsert)

    async def mark_submitting(self, bet_id: int) -> None:
        """Recorded before the resolve tx is sent."""
        await self._set(
            bet_id,
            upsert=True,
            state=ResolutionState.SUBMITTED.value,
            tx_hash=None,
            error=None,
        )

    async def record_failure(self, bet_id: int, error: str, tx_hash: str | None = None) -> None:
        """Keep ``tx_hash`` when the tx may still land; None allows a resubmit."""
        await self._set(bet_id, tx_hash=tx_hash, error=error)

    async def mark_resolved(self, bet_id: int, tx_hash: str | None) -> None:
        await self._set(
            bet_id, state=ResolutionState.RESOLVED.value, tx_hash=tx_hash, error=None
        )

    async def mark_settled(self, bet_id: int) -> None:
        await self._set(bet_id, state=ResolutionState.SETTLED.value)

    async def unfinished(self) -> list[BetResolution]:
        cursor = self._collection.find(
            {"state": {"$ne": ResolutionState.SETTLED.value}}
        ).sort("bet_id", ASCENDING)
        docs = await cursor.to_list(length=None)
        return [BetResolution.from_document(doc) for doc in docs]
