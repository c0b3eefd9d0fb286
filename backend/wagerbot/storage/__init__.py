"""Storage layer for Wagerbot - MongoDB persistence via Motor.

This package provides:
- Custodial wallet store (one keypair per user identity)
- Settlement journal (durable per-participant settlement state)
- Sequence counter (gap-free participation token ids)
- Resolution journal (bet resolutions submitted by this service)
"""

from .counters import SequenceCounter
from .exceptions import StorageError, WalletNotFoundError
from .mongo import (
    COUNTERS,
    RESOLUTIONS,
    SETTLEMENTS,
    WALLETS,
    check_connection,
    create_client,
)
from .resolutions import BetResolution, ResolutionJournal, ResolutionState
from .settlements import ClaimState, Outcome, SettlementAttempt, SettlementJournal
from .wallets import UserWallet, WalletStore, generate_wallet

__all__ = [
    # Connection
    "create_client",
    "check_connection",
    "WALLETS",
    "SETTLEMENTS",
    "COUNTERS",
    "RESOLUTIONS",
    # Wallets
    "UserWallet",
    "WalletStore",
    "generate_wallet",
    # Settlements
    "SettlementAttempt",
    "SettlementJournal",
    "ClaimState",
    "Outcome",
    # Resolutions
    "BetResolution",
    "ResolutionJournal",
    "ResolutionState",
    # Counters
    "SequenceCounter",
    # Errors
    "StorageError",
    "WalletNotFoundError",
]
