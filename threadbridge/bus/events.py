"""Event types passed between chat channels and the bridge."""

from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class ChatMessage:
    """A message as stored in a chat thread's history."""

    id: str
    author_id: str
    author_name: str
    content: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """Local send order: creation time, then id for ties."""
        return (self.created_at, self.id)


@dataclass
class InboundMessage:
    """A message event received from a chat channel."""

    event_id: str  # platform message id
    channel_id: str
    author_id: str
    author_name: str
    content: str
    thread_id: str | None = None  # set when the message was posted inside a thread
    mentions_bot: bool = False
    from_bot: bool = False
    thread_owner_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def in_thread(self) -> bool:
        return self.thread_id is not None

    def as_chat_message(self) -> ChatMessage:
        return ChatMessage(
            id=self.event_id,
            author_id=self.author_id,
            author_name=self.author_name,
            content=self.content,
            created_at=self.created_at,
        )
