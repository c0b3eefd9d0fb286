"""In-memory stand-ins for MongoDB, the ledger and Telegram used by unit tests."""

import asyncio
import copy
import itertools
from types import SimpleNamespace
from typing import Any

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from wagerbot.services.ledger import (
    BetRecord,
    BetStatus,
    Direction,
    LedgerError,
    LedgerTimeoutError,
    ParticipantBet,
    ReceiptStatus,
    TokenInfo,
    TransactionReceipt,
    token_id_for,
)
from wagerbot.services.telegram import NotificationResult


# ----------------------------------------------------------------------
# MongoDB
# ----------------------------------------------------------------------


class FakeCursor:
    def __init__(self, docs: list[dict[str, Any]]):
        self._docs = docs

    def sort(self, keys, direction=None):
        if isinstance(keys, str):
            keys = [(keys, direction or 1)]
        for key, order in reversed(keys):
            self._docs.sort(key=lambda doc: doc.get(key), reverse=order < 0)
        return self

    async def to_list(self, length=None):
        return self._docs if length is None else self._docs[:length]


class FakeCollection:
    """Subset of the Motor collection API, including unique indexes."""

    def __init__(self, read_latency: bool = False):
        self.docs: list[dict[str, Any]] = []
        self._unique: list[tuple[str, ...]] = []
        self._ids = itertools.count(1)
        self.fail_writes = False
        # Yield to the event loop on reads so concurrent callers interleave
        self.read_latency = read_latency

    async def create_index(self, keys, unique=False, **kwargs):
        fields = (keys,) if isinstance(keys, str) else tuple(k for k, _ in keys)
        if unique:
            self._unique.append(fields)
        return "_".join(fields)

    @staticmethod
    def _matches(doc, query):
        for key, expected in query.items():
            if isinstance(expected, dict) and "$ne" in expected:
                if doc.get(key) == expected["$ne"]:
                    return False
            elif doc.get(key) != expected:
                return False
        return True

    def _first(self, query):
        return next((d for d in self.docs if self._matches(d, query)), None)

    def _check_unique(self, candidate, ignore=None):
        for fields in self._unique:
            key = tuple(candidate.get(f) for f in fields)
            for doc in self.docs:
                if doc is not ignore and tuple(doc.get(f) for f in fields) == key:
                    raise DuplicateKeyError(f"E11000 duplicate key {fields}: {key}")

    @staticmethod
    def _apply(doc, update, inserting):
        for op, fields in update.items():
            if op == "$set":
                doc.update(fields)
            elif op == "$setOnInsert":
                if inserting:
                    doc.update(fields)
            elif op == "$inc":
                for k, v in fields.items():
                    doc[k] = doc.get(k, 0) + v
            elif op == "$max":
                for k, v in fields.items():
                    if k not in doc or v > doc[k]:
                        doc[k] = v
            else:
                raise NotImplementedError(op)

    def _write(self, query, update, upsert):
        if self.fail_writes:
            raise RuntimeError("write failed")
        existing = self._first(query)
        if existing is None:
            if not upsert:
                return None, None
            doc = dict(query)
            self._apply(doc, update, inserting=True)
            doc.setdefault("_id", next(self._ids))
            self._check_unique(doc)
            self.docs.append(doc)
            return None, doc

        before = copy.deepcopy(existing)
        updated = copy.deepcopy(existing)
        self._apply(updated, update, inserting=False)
        self._check_unique(updated, ignore=existing)
        existing.clear()
        existing.update(updated)
        return before, existing

    async def insert_one(self, document):
        if self.fail_writes:
            raise RuntimeError("write failed")
        doc = copy.deepcopy(document)
        doc.setdefault("_id", next(self._ids))
        self._check_unique(doc)
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, query):
        if self.read_latency:
            await asyncio.sleep(0)
        doc = self._first(query)
        return copy.deepcopy(doc) if doc else None

    def find(self, query=None):
        query = query or {}
        return FakeCursor([copy.deepcopy(d) for d in self.docs if self._matches(d, query)])

    async def update_one(self, query, update, upsert=False):
        before, after = self._write(query, update, upsert)
        return SimpleNamespace(matched_count=int(before is not None))

    async def find_one_and_update(
        self, query, update, upsert=False, return_document=ReturnDocument.BEFORE
    ):
        before, after = self._write(query, update, upsert)
        doc = after if return_document == ReturnDocument.AFTER else before
        return copy.deepcopy(doc) if doc else None


# ----------------------------------------------------------------------
# Ledger
# ----------------------------------------------------------------------


_tx_numbers = itertools.count(1)


def receipt(status: ReceiptStatus = ReceiptStatus.SUCCESS) -> TransactionReceipt:
    return TransactionReceipt(
        tx_hash="0x" + format(next(_tx_numbers), "064x"), status=status, block_number=1
    )


class FakeLedger:
    """Scriptable ledger. Errors and receipt statuses are keyed per call."""

    def __init__(self):
        self.tokens: dict[bytes, TokenInfo] = {
            token_id_for(s): TokenInfo(symbol=s, decimals=8, is_active=True)
            for s in ("ETH", "BTC", "LINK")
        }
        self.bets: dict[int, BetRecord] = {}
        self.end_prices: dict[int, int] = {}
        self.participants: dict[int, list[str]] = {}
        self.stakes: dict[tuple[int, str], ParticipantBet] = {}
        self.rewards: dict[tuple[int, str], int] = {}
        self.balances: dict[str, int] = {}

        self.calls: list[tuple[Any, ...]] = []
        self.minted: list[tuple[str, int]] = []

        self.resolve_errors: dict[int, Exception] = {}
        self.resolve_status: dict[int, ReceiptStatus] = {}
        self.claim_errors: dict[str, Exception] = {}
        self.claim_status: dict[str, ReceiptStatus] = {}
        self.mint_errors: dict[str, Exception] = {}
        self.mint_status: dict[str, ReceiptStatus] = {}
        self.current_bet_id_error: Exception | None = None
        # Raised once by the named read, then cleared
        self.fail_next: dict[str, Exception] = {}

        # Resolve submissions that time out: bet_id -> whether the tx lands
        self.resolve_timeouts: dict[int, bool] = {}
        self.receipts: dict[str, TransactionReceipt] = {}
        self.pending_txs: dict[str, int] = {}

        # Slow-tick simulation: resolve blocks until ``release`` is set.
        self.resolve_started = asyncio.Event()
        self.release: asyncio.Event | None = None

    def add_bet(
        self,
        bet_id: int,
        start_price: int,
        end_price: int,
        end_time: int,
        status: BetStatus = BetStatus.ACTIVE,
        stakes: list[tuple[str, Direction, int]] = (),
        symbol: str = "ETH",
    ) -> None:
        self.bets[bet_id] = BetRecord(
            id=bet_id,
            token_id=token_id_for(symbol),
            status=status,
            start_price=start_price,
            end_price=end_price if status == BetStatus.RESOLVED else 0,
            start_time=end_time - 300,
            end_time=end_time,
            total_pool_higher=sum(a for _, d, a in stakes if d == Direction.HIGHER),
            total_pool_lower=sum(a for _, d, a in stakes if d == Direction.LOWER),
        )
        self.end_prices[bet_id] = end_price
        self.participants[bet_id] = [address for address, _, _ in stakes]
        for address, direction, amount in stakes:
            self.stakes[(bet_id, address)] = ParticipantBet(
                bet_id=bet_id, address=address, amount=amount, direction=direction
            )
            self.rewards[(bet_id, address)] = amount * 2

    def calls_named(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]

    @property
    def writes(self) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if not c[0].startswith("read_")]

    def _maybe_fail(self, name: str) -> None:
        error = self.fail_next.pop(name, None)
        if error is not None:
            raise error

    async def read_token(self, token_id: bytes) -> TokenInfo:
        self.calls.append(("read_token", token_id))
        return self.tokens.get(token_id, TokenInfo(symbol="", is_active=False))

    async def read_bet(self, bet_id: int) -> BetRecord:
        self.calls.append(("read_bet", bet_id))
        self._maybe_fail("read_bet")
        return self.bets[bet_id].model_copy()

    async def read_current_bet_id(self) -> int:
        self.calls.append(("read_current_bet_id",))
        if self.current_bet_id_error:
            raise self.current_bet_id_error
        return max(self.bets, default=0)

    async def read_participants(self, bet_id: int) -> list[str]:
        self.calls.append(("read_participants", bet_id))
        self._maybe_fail("read_participants")
        return list(self.participants.get(bet_id, []))

    async def read_participant_bet(self, bet_id: int, address: str) -> ParticipantBet:
        self.calls.append(("read_participant_bet", bet_id, address))
        self._maybe_fail("read_participant_bet")
        stake = self.stakes.get((bet_id, address))
        if stake is None:
            return ParticipantBet(
                bet_id=bet_id, address=address, amount=0, direction=Direction.HIGHER
            )
        return stake.model_copy()

    async def read_potential_reward(self, bet_id: int, address: str) -> int:
        self.calls.append(("read_potential_reward", bet_id, address))
        return self.rewards.get((bet_id, address), 0)

    async def read_balance(self, address: str) -> int:
        self.calls.append(("read_balance", address))
        return self.balances.get(address, 0)

    async def read_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        self.calls.append(("read_receipt", tx_hash))
        return self.receipts.get(tx_hash)

    async def transaction_known(self, tx_hash: str) -> bool:
        self.calls.append(("read_transaction", tx_hash))
        return tx_hash in self.pending_txs or tx_hash in self.receipts

    def _apply_resolution(self, bet_id: int) -> None:
        bet = self.bets[bet_id]
        bet.status = BetStatus.RESOLVED
        bet.end_price = self.end_prices[bet_id]

    def land(self, tx_hash: str) -> None:
        """Mine a pending resolve tx."""
        self._apply_resolution(self.pending_txs.pop(tx_hash))
        self.receipts[tx_hash] = TransactionReceipt(
            tx_hash=tx_hash, status=ReceiptStatus.SUCCESS, block_number=2
        )

    def drop(self, tx_hash: str) -> None:
        """Evict a pending tx from the node's pool without mining it."""
        del self.pending_txs[tx_hash]

    async def create_bet(self, token_id: bytes) -> TransactionReceipt:
        self.calls.append(("create_bet", token_id))
        bet_id = max(self.bets, default=0) + 1
        self.add_bet(bet_id, start_price=100, end_price=0, end_time=10**10)
        self.bets[bet_id].token_id = token_id
        return receipt()

    async def resolve_bet(self, bet_id: int) -> TransactionReceipt:
        self.calls.append(("resolve_bet", bet_id))
        self.resolve_started.set()
        if self.release is not None:
            await self.release.wait()
        if bet_id in self.resolve_errors:
            raise self.resolve_errors[bet_id]
        if bet_id in self.resolve_timeouts:
            tx = receipt()
            self.pending_txs[tx.tx_hash] = bet_id
            if self.resolve_timeouts.pop(bet_id):
                self.land(tx.tx_hash)
            raise LedgerTimeoutError("resolveBet not confirmed", tx_hash=tx.tx_hash)
        status = self.resolve_status.get(bet_id, ReceiptStatus.SUCCESS)
        if status == ReceiptStatus.SUCCESS:
            self._apply_resolution(bet_id)
        result = receipt(status)
        self.receipts[result.tx_hash] = result
        return result

    async def place_bet(self, bet_id, direction, stake_wei, signer) -> TransactionReceipt:
        self.calls.append(("place_bet", bet_id, direction, stake_wei, signer.address))
        return receipt()

    async def claim_reward(self, bet_id: int, signer) -> TransactionReceipt:
        address = signer.address
        self.calls.append(("claim_reward", bet_id, address))
        await asyncio.sleep(0)
        if address in self.claim_errors:
            raise self.claim_errors[address]
        status = self.claim_status.get(address, ReceiptStatus.SUCCESS)
        if status == ReceiptStatus.SUCCESS:
            self.stakes[(bet_id, address)].claimed = True
        return receipt(status)

    async def mint_participation_token(self, recipient: str, sequence: int) -> TransactionReceipt:
        self.calls.append(("mint_participation_token", recipient, sequence))
        await asyncio.sleep(0)
        if recipient in self.mint_errors:
            raise self.mint_errors[recipient]
        status = self.mint_status.get(recipient, ReceiptStatus.SUCCESS)
        if status == ReceiptStatus.SUCCESS:
            self.minted.append((recipient, sequence))
        return receipt(status)


def ledger_error(message: str = "rpc down") -> LedgerError:
    return LedgerError(message)


# ----------------------------------------------------------------------
# Telegram
# ----------------------------------------------------------------------


class FakeNotifier:
    def __init__(self, fail: bool = False, permanent: bool = False):
        self.fail = fail
        self.permanent = permanent
        self.sent: list[tuple[str, str]] = []
        self.attempts = 0

    async def send(self, chat_id: str, text: str) -> NotificationResult:
        self.attempts += 1
        if self.fail or self.permanent:
            return NotificationResult(
                chat_id=chat_id,
                delivered=False,
                attempts=1,
                error="bot was blocked by the user" if self.permanent else "timed out",
                permanent=self.permanent,
            )
        self.sent.append((chat_id, text))
        return NotificationResult(
            chat_id=chat_id, delivered=True, message_id=len(self.sent), attempts=1
        )

    def texts_for(self, chat_id: str) -> list[str]:
        return [text for cid, text in self.sent if cid == chat_id]
