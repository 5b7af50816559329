"""Idle reaper - periodic eviction of inactive threads."""

import asyncio
import time
from typing import Any, Callable

from loguru import logger

from threadbridge.bridge.messages import ARCHIVE_REASON, archive_notice
from threadbridge.channels.base import ChannelError, ChatChannel
from threadbridge.config.schema import IDLE_SWEEP_INTERVAL_S, IDLE_TTL_S
from threadbridge.providers.base import AssistantProvider, AssistantServiceError
from threadbridge.session.registry import ThreadRegistry


class IdleReaper:
    """
    Periodic sweep that forgets threads idle for longer than the TTL.

    Evicting a thread releases its remote session. With ``with_archival``
    the chat thread also gets an inactivity notice and is archived; both are
    best-effort and never block the eviction.
    """

    def __init__(
        self,
        registry: ThreadRegistry,
        provider: AssistantProvider,
        channel: ChatChannel | None = None,
        interval_s: float = IDLE_SWEEP_INTERVAL_S,
        idle_ttl_s: float = IDLE_TTL_S,
        with_archival: bool = False,
        locale: str = "en",
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.provider = provider
        self.channel = channel
        self.interval_s = interval_s
        self.idle_ttl_s = idle_ttl_s
        self.with_archival = with_archival and channel is not None
        self.locale = locale
        self.clock = clock
        self._running = False
        self._task: asyncio.Task | None = None
        self._last_run_at: float | None = None
        self._evicted_total = 0

    async def start(self) -> None:
        """Start the sweep loop."""
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            f"Idle reaper started (every {self.interval_s}s, ttl {self.idle_ttl_s}s, "
            f"archival {'on' if self.with_archival else 'off'})"
        )

    def stop(self) -> None:
        """Stop the sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_s)
                if self._running:
                    await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Idle sweep error: {e}")

    async def sweep(self) -> list[str]:
        """Evict every idle thread. Returns the evicted thread ids."""
        self._last_run_at = self.clock()
        evicted = []
        for thread_id in self.registry.thread_ids():
            entry = self.registry.get(thread_id)
            if entry is None or not self._is_idle(entry.last_active_at):
                continue
            if await self._evict(thread_id):
                evicted.append(thread_id)

        self._evicted_total += len(evicted)
        if evicted:
            logger.info(f"Idle sweep evicted {len(evicted)} thread(s)")
        else:
            logger.debug("Idle sweep: nothing to evict")
        return evicted

    async def _evict(self, thread_id: str) -> bool:
        async with self.registry.scope(thread_id):
            entry = self.registry.get(thread_id)
            # Re-check under the scope: an event may have touched the thread
            # while we waited.
            if entry is None or not self._is_idle(entry.last_active_at):
                return False
            if entry.active_run is not None:
                logger.debug(f"Thread {thread_id} has run {entry.active_run.run_id} in flight; not evicting")
                return False

            if self.with_archival:
                await self._archive(thread_id)

            if entry.session_id:
                try:
                    await self.provider.delete_session(entry.session_id)
                    logger.info(f"Deleted session {entry.session_id} of idle thread {thread_id}")
                except AssistantServiceError as e:
                    logger.warning(f"Could not delete session {entry.session_id}: {e}")

            self.registry.delete(thread_id)
        return True

    async def _archive(self, thread_id: str) -> None:
        try:
            await self.channel.notify_archived(thread_id, archive_notice(self.locale))
            await self.channel.archive(thread_id, ARCHIVE_REASON)
            logger.info(f"Archived thread {thread_id} due to inactivity")
        except ChannelError as e:
            logger.warning(f"Could not archive thread {thread_id}: {e}")

    def _is_idle(self, last_active_at: float) -> bool:
        return self.clock() - last_active_at > self.idle_ttl_s

    def status(self) -> dict[str, Any]:
        """Return reaper status."""
        return {
            "running": self._running,
            "interval_s": self.interval_s,
            "idle_ttl_s": self.idle_ttl_s,
            "with_archival": self.with_archival,
            "tracked_threads": len(self.registry),
            "last_run_at": self._last_run_at,
            "evicted_total": self._evicted_total,
        }
