"""Data models for the bet reconciler."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class ParticipantOutcome(str, Enum):
    SETTLED = "settled"
    SETTLEMENT_FAILED = "settlement_failed"
    SETTLEMENT_PENDING = "settlement_pending"
    LOST = "lost"
    FOREIGN = "foreign"
    ALREADY_HANDLED = "already_handled"
    ERROR = "error"


class TickResult(BaseModel):
    """Summary of one reconciliation pass."""

    skipped: bool = False
    bets_scanned: int = 0
    bets_resolved: int = 0
    resolve_failures: int = 0
    resolves_pending: int = 0
    bet_errors: int = 0
    participants_settled: int = 0
    settlement_failures: int = 0
    settlements_pending: int = 0
    participants_lost: int = 0
    foreign_skipped: int = 0
    participant_errors: int = 0
    resumed: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    def record(self, outcome: ParticipantOutcome) -> None:
        if outcome == ParticipantOutcome.SETTLED:
            self.participants_settled += 1
        elif outcome == ParticipantOutcome.SETTLEMENT_FAILED:
            self.settlement_failures += 1
        elif outcome == ParticipantOutcome.SETTLEMENT_PENDING:
            self.settlements_pending += 1
        elif outcome == ParticipantOutcome.LOST:
            self.participants_lost += 1
        elif outcome == ParticipantOutcome.FOREIGN:
            self.foreign_skipped += 1
        elif outcome == ParticipantOutcome.ERROR:
            self.participant_errors += 1
