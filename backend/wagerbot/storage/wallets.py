"""Custodial wallet store.

This is the only component that holds user signing material. Private keys
are persisted in the clear in the ``wallets`` collection: the service is
custodial, so anyone with database access can move user funds.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import BaseModel, Field
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from web3 import Web3

from .exceptions import WalletNotFoundError

logger = logging.getLogger(__name__)


class UserWallet(BaseModel):
    """Custodial keypair record, one per user identity."""

    user_id: str
    address: str
    private_key: str = Field(repr=False)
    created_at: datetime

    def signer(self) -> LocalAccount:
        return Account.from_key(self.private_key)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> UserWallet:
        return cls(
            user_id=doc["user_id"],
            address=doc["address"],
            private_key=doc["private_key"],
            created_at=doc["created_at"],
        )


def generate_wallet(user_id: str) -> UserWallet:
    account = Account.create()
    return UserWallet(
        user_id=user_id,
        address=account.address,
        private_key="0x" + bytes(account.key).hex(),
        created_at=datetime.now(timezone.utc),
    )


class WalletStore:
    def __init__(self, collection: AsyncIOMotorCollection):
        self._collection = collection

    async def ensure_indexes(self) -> None:
        await self._collection.create_index("user_id", unique=True)
        await self._collection.create_index("address", unique=True)

    async def find(self, user_id: str | int) -> UserWallet | None:
        doc = await self._collection.find_one({"user_id": str(user_id)})
        return UserWallet.from_document(doc) if doc else None

    async def find_by_address(self, address: str) -> UserWallet | None:
        doc = await self._collection.find_one({"address": Web3.to_checksum_address(address)})
        return UserWallet.from_document(doc) if doc else None

    async def require(self, user_id: str | int) -> UserWallet:
        wallet = await self.find(user_id)
        if wallet is None:
            raise WalletNotFoundError(f"No wallet for user {user_id}")
        return wallet

    async def get_or_create(self, user_id: str | int) -> UserWallet:
        """Return the user's wallet, creating it on first request.

        Creation is a single upsert keyed on ``user_id``: concurrent callers,
        in this process or another, all get back the record that won.
        """
        key = str(user_id)
        existing = await self.find(key)
        if existing:
            return existing

        candidate = generate_wallet(key)
        try:
            doc = await self._collection.find_one_and_update(
                {"user_id": key},
                {"$setOnInsert": candidate.to_document()},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # Two upserts raced on the unique index; the other one inserted
            doc = await self._collection.find_one({"user_id": key})

        wallet = UserWallet.from_document(doc)
        if wallet.address == candidate.address:
            logger.info(f"Created custodial wallet {wallet.address} for user {key}")
        return wallet
