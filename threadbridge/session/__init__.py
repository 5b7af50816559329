"""Thread state module for threadbridge."""

from threadbridge.session.registry import ActiveRun, ThreadEntry, ThreadRegistry

__all__ = ["ThreadRegistry", "ThreadEntry", "ActiveRun"]
