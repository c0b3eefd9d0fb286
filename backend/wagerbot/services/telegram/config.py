"""Settlement notifier config."""

from pydantic import BaseModel


class TelegramConfig(BaseModel):
    """Bot credentials and delivery policy for settlement messages."""

    bot_token: str = ""
    send_timeout_seconds: float = 30.0
    max_attempts: int = 2
    retry_delay_seconds: float = 2.0
    max_retry_after_seconds: float = 30.0  # Longer flood waits are left to the next tick
    parse_mode: str | None = None
