"""Bet lifecycle reconciler package."""

from .main import BetReconciler
from .models import ParticipantOutcome, TickResult

__all__ = ["BetReconciler", "ParticipantOutcome", "TickResult"]
