"""Bet lifecycle reconciler: resolves expired bets and settles custodial participants."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable

from wagerbot.config import ReconcilerConfig
from wagerbot.services.ledger import (
    BetRecord,
    Direction,
    LedgerClient,
    LedgerError,
    LedgerTimeoutError,
)
from wagerbot.services.telegram import TelegramNotifier
from wagerbot.storage import (
    BetResolution,
    ClaimState,
    Outcome,
    ResolutionJournal,
    ResolutionState,
    SequenceCounter,
    SettlementAttempt,
    SettlementJournal,
    UserWallet,
    WalletStore,
)

from . import messages
from .models import ParticipantOutcome, TickResult

logger = logging.getLogger(__name__)


class BetReconciler:
    """Periodic pass over all bets.

    Per tick: finish settlements left unfinished by earlier ticks, then for
    every bet id resolve the ones that are active and expired, and settle
    each custodial participant of a bet this service resolved. A resolution
    stays open in the resolution journal until every participant has been
    journaled, so a resolve that timed out or a failed read is picked up
    again next tick. Ticks never overlap: a tick that finds another one
    running returns immediately.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        wallets: WalletStore,
        journal: SettlementJournal,
        resolutions: ResolutionJournal,
        counter: SequenceCounter,
        notifier: TelegramNotifier | None,
        config: ReconcilerConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger
        self.wallets = wallets
        self.journal = journal
        self.resolutions = resolutions
        self.counter = counter
        self.notifier = notifier
        self.config = config or ReconcilerConfig()
        self._clock = clock
        self._tick_lock = asyncio.Lock()
        self._settle_slots = asyncio.Semaphore(max(1, self.config.max_parallel_settlements))

    @property
    def is_running(self) -> bool:
        return self._tick_lock.locked()

    async def wait_idle(self) -> None:
        """Block until an in-flight tick (if any) has finished."""
        async with self._tick_lock:
            pass

    async def run_tick(self) -> TickResult:
        """Run one pass. Raises only if the bet count or open resolutions cannot be read."""
        if self._tick_lock.locked():
            logger.warning("Reconciliation tick still running; skipping this firing")
            return TickResult(skipped=True)

        async with self._tick_lock:
            result = TickResult()
            try:
                await self._tick(result)
            finally:
                result.finished_at = datetime.now(timezone.utc)
            logger.info(
                "Reconciler tick: scanned=%d resolved=%d resolving=%d settled=%d "
                "failed=%d lost=%d foreign=%d resumed=%d",
                result.bets_scanned,
                result.bets_resolved,
                result.resolves_pending,
                result.participants_settled,
                result.settlement_failures,
                result.participants_lost,
                result.foreign_skipped,
                result.resumed,
            )
            return result

    async def _tick(self, result: TickResult) -> None:
        if self.config.resume_unfinished:
            try:
                await self._resume_unfinished(result)
            except Exception as e:
                logger.error(f"Failed to resume unfinished settlements: {e}", exc_info=True)

        # Resolutions submitted by earlier ticks whose fan-out is not complete
        open_resolutions = {r.bet_id: r for r in await self.resolutions.unfinished()}

        current_bet_id = await self.ledger.read_current_bet_id()
        if current_bet_id == 0:
            logger.debug("No bets created yet")
            return

        for bet_id in range(1, current_bet_id + 1):
            result.bets_scanned += 1
            try:
                await self._process_bet(bet_id, open_resolutions.get(bet_id), result)
            except Exception as e:
                result.bet_errors += 1
                logger.error(f"Bet {bet_id}: reconciliation failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Bets
    # ------------------------------------------------------------------

    async def _process_bet(
        self, bet_id: int, resolution: BetResolution | None, result: TickResult
    ) -> None:
        bet = await self.ledger.read_bet(bet_id)

        if bet.is_active:
            if not bet.is_expired(self._clock()):
                return
            if not await self._resolve(bet_id, resolution, result):
                return
            bet = await self.ledger.read_bet(bet_id)
        elif resolution is None:
            # Resolved before this service touched it, or already fanned out
            return
        elif resolution.state == ResolutionState.SUBMITTED:
            await self.resolutions.mark_resolved(bet_id, resolution.tx_hash)
            result.bets_resolved += 1
            logger.info(f"Bet {bet_id}: earlier resolve tx {resolution.tx_hash} confirmed on-chain")

        await self._fan_out(bet, result)

    async def _resolve(
        self, bet_id: int, resolution: BetResolution | None, result: TickResult
    ) -> bool:
        """Submit resolveBet unless an earlier submission may still land."""
        if resolution is not None and resolution.awaiting_receipt:
            tx_hash = resolution.tx_hash
            earlier = await self.ledger.read_receipt(tx_hash)
            if earlier is None:
                if await self.ledger.transaction_known(tx_hash):
                    result.resolves_pending += 1
                    logger.info(f"Bet {bet_id}: resolve tx {tx_hash} still pending")
                    return False
                logger.warning(f"Bet {bet_id}: resolve tx {tx_hash} was dropped, resubmitting")
            elif not earlier.succeeded:
                logger.info(f"Bet {bet_id}: earlier resolve tx {tx_hash} reverted, resubmitting")
            else:
                logger.warning(f"Bet {bet_id}: resolve tx {tx_hash} mined but bet still active")

        await self.resolutions.mark_submitting(bet_id)
        try:
            receipt = await self.ledger.resolve_bet(bet_id)
        except LedgerError as e:
            result.resolve_failures += 1
            await self.resolutions.record_failure(bet_id, str(e), tx_hash=e.tx_hash)
            if e.tx_hash:
                logger.warning(
                    f"Bet {bet_id}: resolve tx {e.tx_hash} unconfirmed, checking next tick: {e}"
                )
            else:
                logger.warning(f"Bet {bet_id}: resolve failed, retrying next tick: {e}")
            return False

        if not receipt.succeeded:
            result.resolve_failures += 1
            await self.resolutions.record_failure(bet_id, f"resolve tx {receipt.tx_hash} reverted")
            logger.info(f"Bet {bet_id}: resolve tx {receipt.tx_hash} reverted, retrying next tick")
            return False

        await self.resolutions.mark_resolved(bet_id, receipt.tx_hash)
        result.bets_resolved += 1
        return True

    async def _fan_out(self, bet: BetRecord, result: TickResult) -> None:
        winning = bet.winning_direction
        participants = await self.ledger.read_participants(bet.id)

        outcomes = await asyncio.gather(
            *(self._settle_isolated(bet.id, address, winning) for address in participants)
        )
        for outcome in outcomes:
            result.record(outcome)

        unsettled = outcomes.count(ParticipantOutcome.ERROR)
        if unsettled:
            logger.warning(
                f"Bet {bet.id}: {unsettled} of {len(participants)} participants "
                f"not settled, retrying next tick"
            )
            return

        await self.resolutions.mark_settled(bet.id)
        logger.info(
            f"Bet {bet.id} resolved: {winning.name} wins "
            f"(start={bet.start_price} end={bet.end_price}, "
            f"{len(participants)} participants)"
        )

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    async def _settle_isolated(
        self, bet_id: int, address: str, winning: Direction
    ) -> ParticipantOutcome:
        async with self._settle_slots:
            try:
                return await self._settle_participant(bet_id, address, winning)
            except Exception as e:
                logger.error(
                    f"Bet {bet_id}: settlement for {address} failed: {e}", exc_info=True
                )
                return ParticipantOutcome.ERROR

    async def _settle_participant(
        self, bet_id: int, address: str, winning: Direction
    ) -> ParticipantOutcome:
        stake = await self.ledger.read_participant_bet(bet_id, address)
        won = stake.direction == winning

        wallet = await self.wallets.find_by_address(address)
        if wallet is None:
            logger.debug(f"Bet {bet_id}: {address} is not custodial, skipping")
            return ParticipantOutcome.FOREIGN

        attempt = SettlementAttempt(
            bet_id=bet_id,
            address=address,
            user_id=wallet.user_id,
            outcome=Outcome.WON if won else Outcome.LOST,
            claim_state=ClaimState.PENDING if won else None,
            reward_wei=await self._read_reward(bet_id, address) if won else None,
        )
        if not await self.journal.begin(attempt):
            return ParticipantOutcome.ALREADY_HANDLED

        if not won:
            await self._notify(attempt)
            return ParticipantOutcome.LOST

        return await self._settle_winner(attempt, wallet)

    async def _settle_winner(
        self, attempt: SettlementAttempt, wallet: UserWallet
    ) -> ParticipantOutcome:
        bet_id, address = attempt.bet_id, attempt.address

        try:
            receipt = await self.ledger.claim_reward(bet_id, wallet.signer())
        except LedgerTimeoutError as e:
            # Outcome unknown; left pending for the next tick to check on-chain.
            logger.warning(f"Bet {bet_id}: claim for {address} unconfirmed: {e}")
            return ParticipantOutcome.SETTLEMENT_PENDING
        except LedgerError as e:
            return await self._fail(attempt, f"claim failed: {e}")

        if not receipt.succeeded:
            return await self._fail(attempt, f"claim tx {receipt.tx_hash} reverted")

        attempt.claim_state = ClaimState.CLAIMED
        await self.journal.mark_claimed(bet_id, address, attempt.reward_wei)
        return await self._mint_and_notify(attempt)

    async def _read_reward(self, bet_id: int, address: str) -> int | None:
        try:
            return await self.ledger.read_potential_reward(bet_id, address)
        except LedgerError as e:
            logger.warning(f"Bet {bet_id}: could not read reward for {address}: {e}")
            return None

    async def _mint_and_notify(self, attempt: SettlementAttempt) -> ParticipantOutcome:
        bet_id, address = attempt.bet_id, attempt.address
        try:
            async with self.counter.reserve() as reservation:
                try:
                    receipt = await self.ledger.mint_participation_token(
                        address, reservation.value
                    )
                except LedgerTimeoutError:
                    # The mint may still land with this id, never hand it out again.
                    reservation.commit()
                    raise
                if receipt.succeeded:
                    reservation.commit()
        except LedgerError as e:
            return await self._fail(attempt, f"mint failed: {e}")

        if not receipt.succeeded:
            return await self._fail(attempt, f"mint tx {receipt.tx_hash} reverted")

        attempt.token_sequence = reservation.value
        await self.journal.mark_minted(bet_id, address, reservation.value)
        logger.info(
            f"Bet {bet_id}: settled {address} (token #{reservation.value})"
        )
        await self._notify(attempt)
        return ParticipantOutcome.SETTLED

    async def _fail(self, attempt: SettlementAttempt, error: str) -> ParticipantOutcome:
        logger.warning(f"Bet {attempt.bet_id}: settlement for {attempt.address} failed: {error}")
        attempt.claim_state = ClaimState.FAILED
        attempt.error = error
        await self.journal.mark_failed(attempt.bet_id, attempt.address, error)
        await self._notify(attempt)
        return ParticipantOutcome.SETTLEMENT_FAILED

    async def _notify(self, attempt: SettlementAttempt) -> bool:
        bet_id, address = attempt.bet_id, attempt.address
        if self.notifier is None:
            await self.journal.mark_notified(bet_id, address, note="notifications disabled")
            return False

        try:
            delivery = await self.notifier.send(attempt.user_id, messages.for_attempt(attempt))
            delivered, permanent, error = delivery.delivered, delivery.permanent, delivery.error
        except Exception as e:
            delivered, permanent, error = False, False, str(e)

        if delivered:
            await self.journal.mark_notified(bet_id, address)
            return True

        if permanent:
            logger.warning(f"Bet {bet_id}: user {attempt.user_id} unreachable: {error}")
            await self.journal.mark_notified(bet_id, address, note=f"undeliverable: {error}")
            return False

        attempts = await self.journal.record_notify_failure(bet_id, address)
        logger.warning(
            f"Bet {bet_id}: notification to user {attempt.user_id} failed "
            f"({attempts}/{self.config.max_notify_attempts}): {error}"
        )
        if attempts >= self.config.max_notify_attempts:
            await self.journal.mark_notified(
                bet_id, address, note=f"gave up after {attempts} failed deliveries"
            )
        return False

    # ------------------------------------------------------------------
    # Resumption
    # ------------------------------------------------------------------

    async def _resume_unfinished(self, result: TickResult) -> None:
        for attempt in await self.journal.unfinished():
            result.resumed += 1
            try:
                await self._resume(attempt)
            except Exception as e:
                logger.error(
                    f"Bet {attempt.bet_id}: resuming settlement for {attempt.address} failed: {e}",
                    exc_info=True,
                )

    async def _resume(self, attempt: SettlementAttempt) -> None:
        bet_id, address = attempt.bet_id, attempt.address

        if attempt.outcome == Outcome.WON and attempt.claim_state == ClaimState.PENDING:
            stake = await self.ledger.read_participant_bet(bet_id, address)
            if not stake.claimed:
                # Never re-submit a claim whose first submission is unaccounted for.
                await self._fail(attempt, "claim not confirmed")
                return
            attempt.claim_state = ClaimState.CLAIMED
            await self.journal.mark_claimed(bet_id, address, attempt.reward_wei)

        if (
            attempt.outcome == Outcome.WON
            and attempt.claim_state == ClaimState.CLAIMED
            and attempt.token_sequence is None
        ):
            await self._mint_and_notify(attempt)
            return

        await self._notify(attempt)
