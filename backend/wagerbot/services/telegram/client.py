"""Telegram notifier for settlement outcomes."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any

from telegram import Bot
from telegram.error import (
    BadRequest,
    Forbidden,
    InvalidToken,
    NetworkError,
    RetryAfter,
    TelegramError,
)

from .config import TelegramConfig
from .exceptions import (
    NotifierAuthError,
    NotifierConfigError,
    NotifierConnectionError,
    NotifierError,
)
from .models import NotificationResult

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Sends plain-text settlement messages to users by chat id.

    ``send`` never raises: every outcome, including a user who blocked the
    bot, comes back as a ``NotificationResult`` so the caller can decide
    whether to try again on a later tick.
    """

    def __init__(
        self,
        config: TelegramConfig | None = None,
        bot_token: str | None = None,
    ):
        self.config = config or TelegramConfig()
        if bot_token:
            self.config.bot_token = bot_token

        if not self.config.bot_token:
            raise NotifierConfigError("TELEGRAM_BOT_TOKEN is required for notifications")

        self._bot: Bot | None = None

    async def __aenter__(self) -> TelegramNotifier:
        bot = Bot(token=self.config.bot_token)
        try:
            await bot.initialize()
        except InvalidToken as e:
            logger.error(f"Telegram rejected the bot token: {e}")
            raise NotifierAuthError(f"Invalid bot token: {e}") from e
        except NetworkError as e:
            logger.error(f"Could not reach Telegram: {e}")
            raise NotifierConnectionError(f"Telegram unreachable: {e}") from e
        except TelegramError as e:
            raise NotifierError(f"Notifier startup failed: {e}") from e

        self._bot = bot
        logger.info(f"Notifier connected as @{bot.username}")
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        if self._bot:
            await self._bot.shutdown()
            self._bot = None
            logger.info("Notifier closed")

    @property
    def bot(self) -> Bot:
        if self._bot is None:
            raise RuntimeError("TelegramNotifier must be used as async context manager")
        return self._bot

    def _flood_wait(self, error: RetryAfter) -> float | None:
        delay = error.retry_after
        if isinstance(delay, timedelta):
            delay = delay.total_seconds()
        return float(delay) if delay <= self.config.max_retry_after_seconds else None

    async def send(self, chat_id: str, text: str) -> NotificationResult:
        chat_id = str(chat_id)
        attempts = 0
        last_error = "not sent"

        while attempts < self.config.max_attempts:
            attempts += 1
            delay = self.config.retry_delay_seconds
            try:
                message = await self.bot.send_message(
                    chat_id=chat_id,
                    text=text,
                    parse_mode=self.config.parse_mode,
                    read_timeout=self.config.send_timeout_seconds,
                    write_timeout=self.config.send_timeout_seconds,
                )
                logger.debug(f"Delivered message {message.message_id} to {chat_id}")
                return NotificationResult(
                    chat_id=chat_id,
                    delivered=True,
                    message_id=message.message_id,
                    attempts=attempts,
                )

            except (Forbidden, BadRequest) as e:
                # Blocked bot, deleted account or unknown chat
                logger.warning(f"Cannot deliver to {chat_id}: {e.message}")
                return NotificationResult(
                    chat_id=chat_id,
                    delivered=False,
                    attempts=attempts,
                    error=e.message,
                    permanent=True,
                )
            except RetryAfter as e:
                last_error = e.message
                wait = self._flood_wait(e)
                if wait is None:
                    logger.warning(f"Flood control for {chat_id} too long, deferring: {e.message}")
                    break
                delay = wait
            except NetworkError as e:
                last_error = e.message or "network error"
            except Exception as e:
                last_error = str(e) or type(e).__name__

            logger.warning(
                f"Delivery to {chat_id} failed "
                f"(attempt {attempts}/{self.config.max_attempts}): {last_error}"
            )
            if attempts < self.config.max_attempts:
                await asyncio.sleep(delay)

        return NotificationResult(
            chat_id=chat_id,
            delivered=False,
            attempts=attempts,
            error=last_error,
        )


def create_notifier(
    bot_token: str | None = None,
    config: TelegramConfig | None = None,
) -> TelegramNotifier:
    """Create a TelegramNotifier instance."""
    return TelegramNotifier(config=config, bot_token=bot_token)
