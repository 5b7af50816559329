"""Message bus module for threadbridge."""

from threadbridge.bus.events import ChatMessage, InboundMessage
from threadbridge.bus.queue import MessageBus

__all__ = ["MessageBus", "InboundMessage", "ChatMessage"]
