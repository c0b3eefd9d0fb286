"""User-facing notification texts for settlement outcomes."""

from decimal import Decimal

from wagerbot.storage.settlements import ClaimState, Outcome, SettlementAttempt

WEI_PER_ETH = Decimal(10) ** 18


def format_eth(wei: int) -> str:
    return f"{(Decimal(wei) / WEI_PER_ETH).normalize():f}"


def reward_claimed(bet_id: int, reward_wei: int | None) -> str:
    text = f"🎁 Your reward for bet #{bet_id} has been automatically claimed!"
    if reward_wei is not None:
        text += f"\nAmount: {format_eth(reward_wei)} ETH"
    return text


def claim_failed(bet_id: int) -> str:
    return (
        f"⚠️ Automatic reward claim failed for bet #{bet_id}. "
        "Please claim your reward manually."
    )


def bet_lost(bet_id: int) -> str:
    return f"Bet #{bet_id} has been resolved. Unfortunately, you did not win this time."


def for_attempt(attempt: SettlementAttempt) -> str:
    if attempt.outcome == Outcome.LOST:
        return bet_lost(attempt.bet_id)
    if attempt.claim_state == ClaimState.CLAIMED and attempt.token_sequence is not None:
        return reward_claimed(attempt.bet_id, attempt.reward_wei)
    return claim_failed(attempt.bet_id)
