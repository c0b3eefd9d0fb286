"""Durable journal of per-participant settlement attempts.

One document per (bet_id, address). A participant with a journal entry is
never claimed again by a normal reconciliation pass; unfinished entries
(``notified == False``) are driven to completion on later ticks.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import BaseModel, Field
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Outcome(str, Enum):
    WON = "won"
    LOST = "lost"


class ClaimState(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    FAILED = "failed"


class SettlementAttempt(BaseModel):
    bet_id: int
    address: str
    user_id: str
    outcome: Outcome
    claim_state: ClaimState | None = None  # None for losing participants
    reward_wei: int | None = None
    token_sequence: int | None = None
    notified: bool = False
    notify_attempts: int = 0
    error: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_settled(self) -> bool:
        return self.claim_state == ClaimState.CLAIMED and self.token_sequence is not None

    def to_document(self) -> dict[str, Any]:
        doc = self.model_dump(mode="python")
        doc["outcome"] = self.outcome.value
        doc["claim_state"] = self.claim_state.value if self.claim_state else None
        # Wei amounts overflow BSON int64
        doc["reward_wei"] = str(self.reward_wei) if self.reward_wei is not None else None
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> SettlementAttempt:
        data = {k: v for k, v in doc.items() if k != "_id"}
        if data.get("reward_wei") is not None:
            data["reward_wei"] = int(data["reward_wei"])
        return cls(**data)


class SettlementJournal:
    def __init__(self, collection: AsyncIOMotorCollection):
        self._collection = collection

    async def ensure_indexes(self) -> None:
        await self._collection.create_index(
            [("bet_id", ASCENDING), ("address", ASCENDING)], unique=True
        )
        await self._collection.create_index("notified")

    @staticmethod
    def _key(bet_id: int, address: str) -> dict[str, Any]:
        return {"bet_id": bet_id, "address": address}

    async def find(self, bet_id: int, address: str) -> SettlementAttempt | None:
        doc = await self._collection.find_one(self._key(bet_id, address))
        return SettlementAttempt.from_document(doc) if doc else None

    async def begin(self, attempt: SettlementAttempt) -> bool:
        """Record a new attempt. False if one already exists for the pair."""
        try:
            await self._collection.insert_one(attempt.to_document())
            return True
        except DuplicateKeyError:
            logger.debug(
                f"Settlement for bet {attempt.bet_id} / {attempt.address} already journaled"
            )
            return False

    async def _set(self, bet_id: int, address: str, **fields: Any) -> None:
        fields["updated_at"] = _utcnow()
        await self._collection.update_one(self._key(bet_id, address), {"$set": fields})

    async def mark_claimed(self, bet_id: int, address: str, reward_wei: int | None) -> None:
        await self._set(
            bet_id,
            address,
            claim_state=ClaimState.CLAIMED.value,
            reward_wei=str(reward_wei) if reward_wei is not None else None,
        )

    async def mark_minted(self, bet_id: int, address: str, token_sequence: int) -> None:
        await self._set(bet_id, address, token_sequence=token_sequence)

    async def mark_failed(self, bet_id: int, address: str, error: str) -> None:
        await self._set(bet_id, address, claim_state=ClaimState.FAILED.value, error=error)

    async def mark_notified(self, bet_id: int, address: str, note: str | None = None) -> None:
        fields: dict[str, Any] = {"notified": True}
        if note:
            fields["error"] = note
        await self._set(bet_id, address, **fields)

    async def record_notify_failure(self, bet_id: int, address: str) -> int:
        """Increment and return the failed delivery count."""
        doc = await self._collection.find_one_and_update(
            self._key(bet_id, address),
            {"$inc": {"notify_attempts": 1}, "$set": {"updated_at": _utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return int(doc["notify_attempts"]) if doc else 0

    async def unfinished(self) -> list[SettlementAttempt]:
        cursor = self._collection.find({"notified": False}).sort(
            [("bet_id", ASCENDING), ("address", ASCENDING)]
        )
        docs = await cursor.to_list(length=None)
        return [SettlementAttempt.from_document(doc) for doc in docs]
