from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any, Sequence

from pydantic import BaseModel


class Direction(IntEnum):
    """Side of a bet, encoded as the contract's enum ordinal."""

    HIGHER = 0
    LOWER = 1

    @classmethod
    def parse(cls, value: str) -> Direction:
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Invalid direction: {value!r} (use 'higher' or 'lower')") from None


class BetStatus(IntEnum):
    ACTIVE = 0
    RESOLVED = 1


class ReceiptStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


def winning_direction(start_price: int, end_price: int) -> Direction:
    """Strictly greater end price wins HIGHER; a tie classifies as LOWER."""
    return Direction.HIGHER if end_price > start_price else Direction.LOWER


class TokenInfo(BaseModel):
    symbol: str
    decimals: int = 18
    is_active: bool = False

    @classmethod
    def from_contract(cls, values: Sequence[Any]) -> TokenInfo:
        # tokens(bytes32) -> (symbol, priceFeed, decimals, isActive)
        return cls(symbol=values[0], decimals=int(values[2]), is_active=bool(values[3]))


class BetRecord(BaseModel):
    id: int
    token_id: bytes
    status: BetStatus
    start_price: int
    end_price: int
    start_time: int
    end_time: int
    total_pool_higher: int = 0
    total_pool_lower: int = 0

    @property
    def is_active(self) -> bool:
        return self.status == BetStatus.ACTIVE

    def is_expired(self, now: float) -> bool:
        return self.end_time <= now

    def seconds_left(self, now: float) -> int:
        return max(0, self.end_time - int(now))

    @property
    def winning_direction(self) -> Direction:
        return winning_direction(self.start_price, self.end_price)

    @classmethod
    def from_contract(cls, values: Sequence[Any]) -> BetRecord:
        # bets(uint256) -> (id, tokenId, startPrice, endPrice, startTime,
        #                   endTime, totalPoolHigher, totalPoolLower, status)
        return cls(
            id=int(values[0]),
            token_id=bytes(values[1]),
            start_price=int(values[2]),
            end_price=int(values[3]),
            start_time=int(values[4]),
            end_time=int(values[5]),
            total_pool_higher=int(values[6]),
            total_pool_lower=int(values[7]),
            status=BetStatus(int(values[8])),
        )


class ParticipantBet(BaseModel):
    bet_id: int
    address: str
    amount: int
    direction: Direction
    claimed: bool = False

    @property
    def has_stake(self) -> bool:
        return self.amount > 0

    @classmethod
    def from_contract(cls, bet_id: int, address: str, values: Sequence[Any]) -> ParticipantBet:
        # userBets(uint256, address) -> (amount, direction, claimed)
        return cls(
            bet_id=bet_id,
            address=address,
            amount=int(values[0]),
            direction=Direction(int(values[1])),
            claimed=bool(values[2]),
        )


class TransactionReceipt(BaseModel):
    tx_hash: str
    status: ReceiptStatus
    block_number: int | None = None
    gas_used: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == ReceiptStatus.SUCCESS

    @classmethod
    def from_web3(cls, receipt: Any) -> TransactionReceipt:
        tx_hash = receipt["transactionHash"]
        if isinstance(tx_hash, (bytes, bytearray)):
            tx_hash = "0x" + bytes(tx_hash).hex()
        return cls(
            tx_hash=str(tx_hash),
            status=ReceiptStatus.SUCCESS if receipt["status"] == 1 else ReceiptStatus.FAILED,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed"),
        )
