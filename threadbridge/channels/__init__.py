"""Chat channels module for threadbridge."""

from threadbridge.channels.base import ChannelError, ChannelNotFoundError, ChatChannel

__all__ = ["ChatChannel", "ChannelError", "ChannelNotFoundError"]
