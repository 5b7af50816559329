"""Reconcile a remote session with the local thread history."""

import time
from dataclasses import dataclass, field
from typing import Callable

from loguru import logger

from threadbridge.bus.events import ChatMessage
from threadbridge.channels.base import ChatChannel
from threadbridge.providers.base import AssistantProvider, SessionMessage
from threadbridge.session.registry import ThreadEntry, ThreadRegistry


@dataclass
class SyncPlan:
    """Messages a thread still has to push to its remote session."""

    thread_id: str
    trigger: ChatMessage
    pending: list[ChatMessage] = field(default_factory=list)
    seed: bool = False  # no session yet; pending seeds a new one

    @property
    def is_empty(self) -> bool:
        return not self.pending


class MessageSync:
    """
    Replays locally observed messages into the remote session.

    Only the most recent ``replay_window`` messages of a thread are looked
    at. Anything newer than the thread's tracked point is pushed oldest
    first, and the tracked point advances after each successful append.
    All methods expect the caller to hold the thread's registry scope.
    """

    def __init__(
        self,
        registry: ThreadRegistry,
        channel: ChatChannel,
        provider: AssistantProvider,
        replay_window: int = 30,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.channel = channel
        self.provider = provider
        self.replay_window = max(1, int(replay_window))
        self.clock = clock

    async def plan(self, thread_id: str, trigger: ChatMessage, event_id: str = "") -> SyncPlan:
        """Work out what is missing remotely. Reads only."""
        history = await self.channel.history(thread_id, limit=self.replay_window)
        entry = self.registry.get(thread_id)

        if entry is None or entry.session_id is None:
            # Adoption: the whole bounded history seeds the session.
            return SyncPlan(
                thread_id=thread_id,
                trigger=trigger,
                pending=self._ordered([*history, trigger]),
                seed=True,
            )

        if (
            entry.last_tracked_at is not None
            and len(history) >= self.replay_window
            and history[0].sort_key > self._tracked_key(entry)
        ):
            logger.info(
                f"[{event_id}] Replay window exhausted for thread {thread_id}; "
                f"older messages are not replayed"
            )

        return SyncPlan(
            thread_id=thread_id,
            trigger=trigger,
            pending=self._unreflected(entry, [*history, trigger]),
        )

    async def apply(self, plan: SyncPlan, event_id: str = "") -> ThreadEntry:
        """Push a plan to the remote session and return the updated entry."""
        if plan.seed:
            session_id = await self.provider.create_session(
                [self.to_session_message(m) for m in plan.pending]
            )
            now = self.clock()
            last = plan.pending[-1]

            def _adopt(entry: ThreadEntry) -> None:
                entry.session_id = session_id
                entry.track(last.id, last.created_at)
                entry.touch(now)

            entry = self.registry.upsert(plan.thread_id, _adopt)
            logger.info(
                f"[{event_id}] Created session {session_id} for thread {plan.thread_id} "
                f"seeded with {len(plan.pending)} message(s)"
            )
            return entry

        entry = self.registry.get(plan.thread_id)
        if entry is None or entry.session_id is None:
            raise LookupError(f"Thread {plan.thread_id} is not bridged")
        await self._append(entry, plan.pending)
        logger.info(
            f"[{event_id}] Replayed {len(plan.pending)} message(s) into session {entry.session_id}"
        )
        return entry

    async def catch_up(self, thread_id: str, placeholder: ChatMessage, event_id: str = "") -> list[ChatMessage]:
        """
        Push messages posted before the placeholder, then track the placeholder.

        Closes the gap between reading the history and posting the
        placeholder, so tracking the placeholder never skips a message.
        """
        entry = self.registry.get(thread_id)
        if entry is None or entry.session_id is None:
            raise LookupError(f"Thread {thread_id} is not bridged")

        history = await self.channel.history(thread_id, limit=self.replay_window, before=placeholder.id)
        stragglers = self._unreflected(entry, history)
        if stragglers:
            await self._append(entry, stragglers)
            logger.info(f"[{event_id}] Caught up {len(stragglers)} late message(s) in thread {thread_id}")
        entry.track(placeholder.id, placeholder.created_at)
        return stragglers

    def to_session_message(self, message: ChatMessage) -> SessionMessage:
        role = "assistant" if message.author_id == self.channel.bot_user_id else "user"
        return SessionMessage(role=role, content=f"{message.author_name}: {message.content}")

    async def _append(self, entry: ThreadEntry, messages: list[ChatMessage]) -> None:
        for message in messages:
            await self.provider.append_message(entry.session_id, self.to_session_message(message))
            entry.track(message.id, message.created_at)

    def _unreflected(self, entry: ThreadEntry, messages: list[ChatMessage]) -> list[ChatMessage]:
        ordered = [m for m in self._ordered(messages) if m.id not in entry.posted_message_ids]
        if entry.last_tracked_at is None:
            return ordered
        tracked = self._tracked_key(entry)
        return [m for m in ordered if m.sort_key > tracked]

    @staticmethod
    def _tracked_key(entry: ThreadEntry):
        return (entry.last_tracked_at, entry.last_tracked_message_id or "")

    @staticmethod
    def _ordered(messages: list[ChatMessage]) -> list[ChatMessage]:
        unique = {m.id: m for m in messages}
        return sorted(unique.values(), key=lambda m: m.sort_key)
