"""Wallet and betting operations behind the operator CLI."""

from __future__ import annotations

import logging
import time
from decimal import Decimal, InvalidOperation

from pydantic import BaseModel
from web3 import Web3

from wagerbot.services.ledger import (
    BetRecord,
    Direction,
    LedgerClient,
    ParticipantBet,
    TokenInfo,
    TransactionReceipt,
    token_id_for,
)
from wagerbot.storage import UserWallet, WalletNotFoundError, WalletStore

logger = logging.getLogger(__name__)


class BettingError(Exception):
    """User-correctable problem with a betting request."""

    pass


class WalletView(BaseModel):
    wallet: UserWallet
    created: bool
    balance_wei: int


class ActiveBet(BaseModel):
    bet: BetRecord
    token: TokenInfo
    seconds_left: int


class UserStake(BaseModel):
    bet: BetRecord
    token: TokenInfo
    stake: ParticipantBet


async def connect_wallet(
    wallets: WalletStore, ledger: LedgerClient, user_id: str
) -> WalletView:
    existing = await wallets.find(user_id)
    wallet = existing or await wallets.get_or_create(user_id)
    balance = await ledger.read_balance(wallet.address)
    return WalletView(wallet=wallet, created=existing is None, balance_wei=balance)


async def create_bet(
    ledger: LedgerClient,
    symbol: str,
    supported_tokens: list[str] | None = None,
) -> int:
    """Open a new bet on ``symbol`` with the operator key. Returns its id."""
    symbol = symbol.strip().upper()
    if supported_tokens and symbol not in supported_tokens:
        raise BettingError(
            f"Unsupported token {symbol}. Choose one of: {', '.join(supported_tokens)}"
        )

    token_id = token_id_for(symbol)
    token = await ledger.read_token(token_id)
    if not token.is_active:
        raise BettingError(f"Token {symbol} is not active or not supported.")

    receipt = await ledger.create_bet(token_id)
    if not receipt.succeeded:
        raise BettingError(f"createBet transaction {receipt.tx_hash} failed")

    bet_id = await ledger.read_current_bet_id()
    logger.info(f"Created bet {bet_id} for {symbol}")
    return bet_id


async def place_bet(
    ledger: LedgerClient,
    wallets: WalletStore,
    user_id: str,
    bet_id: int,
    direction: str,
    amount_eth: str,
) -> TransactionReceipt:
    """Stake ``amount_eth`` from the user's custodial wallet."""
    try:
        wallet = await wallets.require(user_id)
    except WalletNotFoundError:
        raise BettingError("Please connect your wallet first.") from None

    try:
        side = Direction.parse(direction)
    except ValueError as e:
        raise BettingError(str(e)) from e

    try:
        amount = Decimal(str(amount_eth))
    except InvalidOperation:
        raise BettingError(f"Invalid amount: {amount_eth!r}") from None
    if not amount.is_finite() or amount <= 0:
        raise BettingError("Amount must be a positive number of ETH.")

    bet = await ledger.read_bet(bet_id)
    if not bet.is_active:
        raise BettingError(f"Bet #{bet_id} is not active.")

    stake_wei = Web3.to_wei(amount, "ether")
    receipt = await ledger.place_bet(bet_id, side, stake_wei, wallet.signer())
    if receipt.succeeded:
        logger.info(f"User {user_id} staked {amount} ETH on bet {bet_id} ({side.name})")
    return receipt


async def list_active_bets(
    ledger: LedgerClient, now: float | None = None
) -> list[ActiveBet]:
    now = time.time() if now is None else now
    current = await ledger.read_current_bet_id()
    active: list[ActiveBet] = []
    for bet_id in range(1, current + 1):
        bet = await ledger.read_bet(bet_id)
        if not bet.is_active:
            continue
        token = await ledger.read_token(bet.token_id)
        active.append(ActiveBet(bet=bet, token=token, seconds_left=bet.seconds_left(now)))
    return active


async def list_user_bets(ledger: LedgerClient, address: str) -> list[UserStake]:
    current = await ledger.read_current_bet_id()
    stakes: list[UserStake] = []
    for bet_id in range(1, current + 1):
        bet = await ledger.read_bet(bet_id)
        if not bet.is_active:
            continue
        stake = await ledger.read_participant_bet(bet_id, address)
        if not stake.has_stake:
            continue
        token = await ledger.read_token(bet.token_id)
        stakes.append(UserStake(bet=bet, token=token, stake=stake))
    return stakes
