"""Idle thread cleanup for threadbridge."""

from threadbridge.reaper.service import IdleReaper

__all__ = ["IdleReaper"]
