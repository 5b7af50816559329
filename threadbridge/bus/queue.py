"""Async message queue decoupling chat channels from the bridge."""

import asyncio

from loguru import logger

from threadbridge.bus.events import InboundMessage


class MessageBus:
    """
    Async message bus between chat channels and the bridge.

    Channels push inbound events; the bridge consumes them and talks back to
    the channel directly, since every outbound call needs the resulting
    message id.
    """

    def __init__(self, maxsize: int = 0):
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    async def publish_inbound(self, msg: InboundMessage) -> None:
        """Publish a message from a channel to the bridge."""
        if self._closed:
            logger.debug(f"Bus closed, dropping inbound event {msg.event_id}")
            return
        await self.inbound.put(msg)

    async def consume_inbound(self) -> InboundMessage:
        """Consume the next inbound message (blocks until available)."""
        return await self.inbound.get()

    def close(self) -> None:
        """Stop accepting new inbound events."""
        self._closed = True
