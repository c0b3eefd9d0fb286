"""Settlement notification models."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class NotificationResult(BaseModel):
    """Delivery outcome for one message to one user."""

    chat_id: str
    delivered: bool
    message_id: int | None = None
    attempts: int = 0
    error: str | None = None
    # The user blocked the bot or the chat does not exist; retrying is pointless
    permanent: bool = False
    finished_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:
        if self.delivered:
            return f"Delivered to {self.chat_id} (msg_id: {self.message_id})"
        kind = "permanently failed" if self.permanent else "failed"
        return f"Delivery to {self.chat_id} {kind} after {self.attempts} attempts: {self.error}"
