"""In-memory registry of bridged threads."""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Callable


@dataclass(frozen=True)
class ActiveRun:
    """The in-flight generation of a thread."""
    run_id: str
    placeholder_message_id: str


@dataclass
class ThreadEntry:
    """
    Bridge state of one chat thread.

    ``last_tracked_at`` mirrors the creation time of the tracked message so
    the tracked point can still be located after that message scrolls out of
    the replay window or is deleted.
    """

    thread_id: str
    session_id: str | None = None
    last_tracked_message_id: str | None = None
    last_tracked_at: datetime | None = None
    handled_remote_message_ids: set[str] = field(default_factory=set)
    # Follow-up chunks of long responses; already in the session as run output.
    posted_message_ids: set[str] = field(default_factory=set)
    active_run: ActiveRun | None = None
    last_active_at: float = field(default_factory=time.time)

    def track(self, message_id: str, created_at: datetime) -> None:
        """Advance the tracked point. Never moves backwards."""
        if self.last_tracked_at is not None and (created_at, message_id) <= (
            self.last_tracked_at,
            self.last_tracked_message_id or "",
        ):
            return
        self.last_tracked_message_id = message_id
        self.last_tracked_at = created_at

    def mark_handled(self, remote_message_id: str) -> bool:
        """Record a rendered remote message. False if it was already handled."""
        if remote_message_id in self.handled_remote_message_ids:
            return False
        self.handled_remote_message_ids.add(remote_message_id)
        return True

    def touch(self, now: float | None = None) -> None:
        self.last_active_at = time.time() if now is None else now


class _Slot:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class ThreadRegistry:
    """
    Per-thread state keyed by local thread id.

    Single dict operations never await, so get/upsert/delete are atomic on
    the event loop. Multi-step sequences that await in between (replay,
    supersede, eviction) run inside ``scope(thread_id)``, a lock partitioned
    by thread id; scopes of different threads never block each other.
    """

    def __init__(self):
        self._entries: dict[str, ThreadEntry] = {}
        self._slots: dict[str, _Slot] = {}

    def get(self, thread_id: str) -> ThreadEntry | None:
        return self._entries.get(thread_id)

    def upsert(
        self,
        thread_id: str,
        mutator: Callable[[ThreadEntry], None] | None = None,
    ) -> ThreadEntry:
        """Create the entry if missing, apply ``mutator`` and return it."""
        entry = self._entries.get(thread_id)
        if entry is None:
            entry = ThreadEntry(thread_id=thread_id)
            self._entries[thread_id] = entry
        if mutator is not None:
            mutator(entry)
        return entry

    def delete(self, thread_id: str) -> ThreadEntry | None:
        return self._entries.pop(thread_id, None)

    def thread_ids(self) -> list[str]:
        """Snapshot of the bridged thread ids."""
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, thread_id: object) -> bool:
        return thread_id in self._entries

    @asynccontextmanager
    async def scope(self, thread_id: str) -> AsyncIterator[None]:
        """Exclusive section for one thread."""
        slot = self._slots.get(thread_id)
        if slot is None:
            slot = _Slot()
            self._slots[thread_id] = slot
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                self._slots.pop(thread_id, None)

    def is_busy(self, thread_id: str) -> bool:
        """True while some task holds or waits for the thread's scope."""
        slot = self._slots.get(thread_id)
        return slot is not None and slot.users > 0
