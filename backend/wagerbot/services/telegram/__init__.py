"""Telegram delivery of per-user settlement messages."""

from .client import TelegramNotifier, create_notifier
from .config import TelegramConfig
from .exceptions import (
    NotifierAuthError,
    NotifierConfigError,
    NotifierConnectionError,
    NotifierError,
)
from .models import NotificationResult

__all__ = [
    "TelegramNotifier",
    "create_notifier",
    "TelegramConfig",
    "NotificationResult",
    "NotifierError",
    "NotifierAuthError",
    "NotifierConfigError",
    "NotifierConnectionError",
]
