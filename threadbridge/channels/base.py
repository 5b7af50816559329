"""Base channel interface for threaded chat platforms."""

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from threadbridge.bus.events import ChatMessage, InboundMessage
from threadbridge.bus.queue import MessageBus


class ChannelError(RuntimeError):
    """A chat platform call failed."""


class ChannelNotFoundError(ChannelError):
    """The thread or message no longer exists on the chat platform."""


class ChatChannel(ABC):
    """
    Abstract base class for threaded chat platform implementations.

    The bridge only talks to the platform through this interface. Archival
    and the inactivity notice are optional capabilities: the defaults log and
    do nothing, so callers never depend on their outcome.
    """

    name: str = "base"
    max_message_length: int = 2000
    max_thread_name_length: int = 100

    def __init__(self, config: Any, bus: MessageBus):
        """
        Initialize the channel.

        Args:
            config: Channel-specific configuration.
            bus: The message bus inbound events are published to.
        """
        self.config = config
        self.bus = bus

    @property
    @abstractmethod
    def bot_user_id(self) -> str:
        """Id of the account the bridge posts as."""

    @abstractmethod
    async def start(self) -> None:
        """
        Connect to the chat platform and begin listening.

        Runs until stopped, forwarding events through _handle_message().
        """

    @abstractmethod
    async def stop(self) -> None:
        """Disconnect and clean up resources."""

    @abstractmethod
    async def send(self, thread_id: str, text: str) -> ChatMessage:
        """Post a message into a thread and return it."""

    @abstractmethod
    async def edit(self, thread_id: str, message_id: str, text: str) -> None:
        """Replace the content of a message the bridge posted."""

    @abstractmethod
    async def delete(self, thread_id: str, message_id: str) -> None:
        """Delete a message from a thread."""

    @abstractmethod
    async def history(
        self,
        thread_id: str,
        limit: int,
        before: str | None = None,
    ) -> list[ChatMessage]:
        """
        Fetch up to ``limit`` of the most recent messages of a thread.

        Args:
            thread_id: The thread to read.
            limit: Maximum number of messages.
            before: Optional message id; only messages older than it are returned.

        Returns:
            Messages ordered oldest first.
        """

    @abstractmethod
    async def create_thread(self, channel_id: str, message_id: str, name: str) -> str:
        """Start a thread from a channel message and return the thread id."""

    async def archive(self, thread_id: str, reason: str) -> None:
        """Archive a thread. Optional capability."""
        logger.debug(f"Channel {self.name} does not support archiving ({thread_id})")

    async def notify_archived(self, thread_id: str, text: str) -> None:
        """Post the inactivity notice before archiving. Optional capability."""
        logger.debug(f"Channel {self.name} skips archive notice ({thread_id})")

    async def _handle_message(self, msg: InboundMessage) -> None:
        """Forward an event received from the platform to the bus."""
        await self.bus.publish_inbound(msg)
