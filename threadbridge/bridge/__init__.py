"""Conversation bridge core for threadbridge."""

from threadbridge.bridge.render import ResponseRenderer, render_citations
from threadbridge.bridge.runs import RunCoordinator, RunOutcome, RunPhase
from threadbridge.bridge.service import Bridge
from threadbridge.bridge.sync import MessageSync, SyncPlan

__all__ = [
    "Bridge",
    "MessageSync",
    "SyncPlan",
    "RunCoordinator",
    "RunOutcome",
    "RunPhase",
    "ResponseRenderer",
    "render_citations",
]
