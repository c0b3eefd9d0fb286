"""Ledger gateway: typed facade over the betting and participation NFT contracts."""

from .client import LedgerClient, checksum, create_ledger_client, token_id_for
from .config import LedgerConfig
from .exceptions import (
    LedgerConfigError,
    LedgerError,
    LedgerNetworkError,
    LedgerRevertError,
    LedgerTimeoutError,
)
from .models import (
    BetRecord,
    BetStatus,
    Direction,
    ParticipantBet,
    ReceiptStatus,
    TokenInfo,
    TransactionReceipt,
    winning_direction,
)

__all__ = [
    "LedgerClient",
    "create_ledger_client",
    "token_id_for",
    "checksum",
    "LedgerConfig",
    "LedgerError",
    "LedgerNetworkError",
    "LedgerTimeoutError",
    "LedgerRevertError",
    "LedgerConfigError",
    "BetRecord",
    "BetStatus",
    "Direction",
    "ParticipantBet",
    "ReceiptStatus",
    "TokenInfo",
    "TransactionReceipt",
    "winning_direction",
]
