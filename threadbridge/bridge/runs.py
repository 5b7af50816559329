"""Single-flight run coordination per thread."""

import asyncio
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from threadbridge.bridge.render import ResponseRenderer, split_for_chat
from threadbridge.bridge.sync import MessageSync
from threadbridge.channels.base import ChannelError, ChatChannel
from threadbridge.providers.base import (
    AssistantProvider,
    AssistantServiceError,
    RemoteNotFoundError,
    RemoteRun,
)
from threadbridge.session.registry import ActiveRun, ThreadEntry, ThreadRegistry


class RunPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RunOutcome:
    """How a polled run ended."""
    run_id: str
    phase: RunPhase
    status: str
    superseded: bool = False


def phase_for_status(status: str) -> RunPhase:
    if status == "completed":
        return RunPhase.COMPLETED
    if status in {"cancelled", "cancelling"}:
        return RunPhase.CANCELLED
    return RunPhase.FAILED


class RunCoordinator:
    """
    Starts, supersedes and completes remote runs, one per thread.

    ``supersede``, ``begin`` and ``finish`` must run inside the thread's
    registry scope. ``await_completion`` runs outside it so a newer message
    can supersede the run while it is being polled; superseding sets the
    run's cancel signal, which ends the poll early.
    """

    def __init__(
        self,
        registry: ThreadRegistry,
        channel: ChatChannel,
        provider: AssistantProvider,
        sync: MessageSync,
        renderer: ResponseRenderer,
        placeholder_text: str,
        poll_interval_s: float = 1.0,
        run_timeout_s: float = 600.0,
        cancel_grace_s: float = 10.0,
    ):
        self.registry = registry
        self.channel = channel
        self.provider = provider
        self.sync = sync
        self.renderer = renderer
        self.placeholder_text = placeholder_text
        self.poll_interval_s = poll_interval_s
        self.run_timeout_s = run_timeout_s
        self.cancel_grace_s = cancel_grace_s
        self._cancel_signals: dict[str, asyncio.Event] = {}
        # Superseded runs that had already completed; still delivered.
        self._completed_runs: set[str] = set()

    def phase(self, thread_id: str) -> RunPhase:
        entry = self.registry.get(thread_id)
        if entry is not None and entry.active_run is not None:
            return RunPhase.RUNNING
        return RunPhase.IDLE

    async def supersede(self, thread_id: str, event_id: str = "") -> ActiveRun | None:
        """
        Cancel and clear the thread's active run, if any.

        Every step is best-effort. A run still in progress is cancelled and
        its placeholder deleted; its output is never rendered. A run that
        already completed keeps its placeholder and is still delivered by
        the task that started it.
        """
        entry = self.registry.get(thread_id)
        if entry is None or entry.active_run is None:
            return None

        previous = entry.active_run
        signal = self._cancel_signals.pop(previous.run_id, None)
        if signal is not None:
            signal.set()

        logger.info(f"[{event_id}] Superseding run {previous.run_id} in session {entry.session_id}")
        run = await self._retrieve_quietly(entry.session_id, previous.run_id, event_id)
        was_running = run is None or not run.is_terminal
        if was_running:
            if run is None or run.is_cancellable:
                await self._cancel_quietly(entry.session_id, previous.run_id, event_id)
            run = await self._wait_settled(entry.session_id, previous.run_id, event_id)

        if run is not None and run.status == "completed":
            # Only a task still waiting on the run (its signal is registered)
            # can deliver it.
            if signal is not None:
                self._completed_runs.add(previous.run_id)
            logger.info(f"[{event_id}] Run {previous.run_id} already completed; keeping its response")
        elif was_running:
            try:
                await self.channel.delete(thread_id, previous.placeholder_message_id)
            except ChannelError as e:
                logger.warning(f"[{event_id}] Could not delete placeholder {previous.placeholder_message_id}: {e}")

        entry.active_run = None
        return previous

    async def begin(self, thread_id: str, event_id: str = "") -> ActiveRun:
        """Post the placeholder, start a run and record it as active."""
        entry = self._require_entry(thread_id)
        if entry.active_run is not None:
            raise RuntimeError(f"Thread {thread_id} already has run {entry.active_run.run_id}")

        placeholder = await self.channel.send(thread_id, self.placeholder_text)
        await self.sync.catch_up(thread_id, placeholder, event_id)

        run = await self.provider.create_run(entry.session_id)
        active = ActiveRun(run_id=run.id, placeholder_message_id=placeholder.id)
        entry.active_run = active
        self._cancel_signals[run.id] = asyncio.Event()
        logger.info(f"[{event_id}] Created run {run.id} in session {entry.session_id}")
        return active

    async def await_completion(self, session_id: str, run_id: str, event_id: str = "") -> RunOutcome:
        """
        Poll a run until it is terminal, superseded or out of time.

        Retrieval failures are logged and polling continues until the
        deadline; a run that vanished counts as failed.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.run_timeout_s
        signal = self._cancel_signals.setdefault(run_id, asyncio.Event())
        status = "queued"

        while True:
            if signal.is_set():
                return RunOutcome(run_id, RunPhase.CANCELLED, status, superseded=True)

            try:
                run = await self.provider.retrieve_run(session_id, run_id)
                status = run.status
            except RemoteNotFoundError:
                logger.warning(f"[{event_id}] Run {run_id} disappeared from session {session_id}")
                return RunOutcome(run_id, RunPhase.FAILED, "missing")
            except AssistantServiceError as e:
                logger.warning(f"[{event_id}] Polling run {run_id} failed: {e}")
                run = None

            if run is not None and run.is_terminal:
                return RunOutcome(run_id, phase_for_status(run.status), run.status)
            if run is not None and run.status == "requires_action":
                # No tool outputs are ever submitted by the bridge.
                await self._cancel_quietly(session_id, run_id, event_id)
                return RunOutcome(run_id, RunPhase.FAILED, run.status)

            remaining = deadline - loop.time()
            if remaining <= 0:
                logger.warning(f"[{event_id}] Run {run_id} still {status} after {self.run_timeout_s}s")
                await self._cancel_quietly(session_id, run_id, event_id)
                return RunOutcome(run_id, RunPhase.FAILED, "timed_out")

            try:
                await asyncio.wait_for(signal.wait(), timeout=min(self.poll_interval_s, remaining))
            except asyncio.TimeoutError:
                continue

    async def finish(self, thread_id: str, active: ActiveRun, outcome: RunOutcome, event_id: str = "") -> bool:
        """
        Settle a polled run. Returns True if output was delivered.

        A run that is no longer the thread's active run was superseded. If it
        had already completed when superseded, its output is delivered as
        usual; otherwise the output is marked handled so no later completion
        can render it.
        """
        completed_before_superseded = active.run_id in self._completed_runs
        self.forget(active.run_id)
        entry = self.registry.get(thread_id)
        if entry is None:
            logger.info(f"[{event_id}] Thread {thread_id} was evicted before run {active.run_id} finished")
            return False

        if entry.active_run != active:
            if completed_before_superseded:
                return await self._render_output(entry, active, event_id)
            await self._discard_output(entry, active.run_id, event_id)
            return False

        entry.active_run = None
        if outcome.phase is not RunPhase.COMPLETED:
            logger.info(f"[{event_id}] Run {active.run_id} in session {entry.session_id} is {outcome.status}")
            return False

        logger.info(f"[{event_id}] Completed run {active.run_id} in session {entry.session_id}")
        return await self._render_output(entry, active, event_id)

    def forget(self, run_id: str) -> None:
        """Drop per-run bookkeeping; safe to call more than once."""
        self._cancel_signals.pop(run_id, None)
        self._completed_runs.discard(run_id)

    async def _render_output(self, entry: ThreadEntry, active: ActiveRun, event_id: str) -> bool:
        messages = await self.provider.list_messages(entry.session_id, run_id=active.run_id)
        unhandled = [
            m for m in messages
            if m.role == "assistant" and m.id not in entry.handled_remote_message_ids
        ]
        if not unhandled:
            logger.info(f"[{event_id}] Run {active.run_id} produced no new output")
            return False

        chosen = unhandled[-1]
        entry.mark_handled(chosen.id)
        logger.info(f"[{event_id}] Handling message {chosen.id} from session {entry.session_id}")

        text = await self.renderer.render(chosen.blocks)
        if not text.strip():
            logger.info(f"[{event_id}] Message {chosen.id} has no text content")
            return False
        await self._deliver(entry, active.placeholder_message_id, text, event_id)
        return True

    async def _deliver(self, entry: ThreadEntry, placeholder_id: str, text: str, event_id: str) -> None:
        chunks = split_for_chat(text, self.channel.max_message_length)
        try:
            await self.channel.edit(entry.thread_id, placeholder_id, chunks[0])
            for chunk in chunks[1:]:
                sent = await self.channel.send(entry.thread_id, chunk)
                entry.posted_message_ids.add(sent.id)
        except ChannelError as e:
            logger.warning(f"[{event_id}] Could not deliver response to thread {entry.thread_id}: {e}")
            return
        logger.info(f"[{event_id}] Sent response to thread {entry.thread_id} ({len(chunks)} part(s))")

    async def _discard_output(self, entry: ThreadEntry, run_id: str, event_id: str) -> None:
        try:
            messages = await self.provider.list_messages(entry.session_id, run_id=run_id)
        except AssistantServiceError as e:
            logger.warning(f"[{event_id}] Could not list output of superseded run {run_id}: {e}")
            return
        for message in messages:
            if message.role == "assistant":
                entry.mark_handled(message.id)
        logger.info(f"[{event_id}] Run {run_id} was superseded; output discarded")

    async def _wait_settled(self, session_id: str, run_id: str, event_id: str) -> RemoteRun | None:
        """
        Wait briefly for a cancelled run to stop. Returns the terminal run,
        or None if its state is unknown or it is still going past the grace
        period (stale).
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.cancel_grace_s
        while loop.time() < deadline:
            run = await self._retrieve_quietly(session_id, run_id, event_id)
            if run is None or run.is_terminal:
                return run
            await asyncio.sleep(min(self.poll_interval_s, max(0.0, deadline - loop.time())))
        logger.warning(f"[{event_id}] Run {run_id} did not stop within {self.cancel_grace_s}s; continuing")
        return None

    async def _cancel_quietly(self, session_id: str, run_id: str, event_id: str) -> bool:
        try:
            await self.provider.cancel_run(session_id, run_id)
        except AssistantServiceError as e:
            logger.warning(f"[{event_id}] Could not cancel run {run_id}: {e}")
            return False
        logger.info(f"[{event_id}] Cancelled run {run_id} in session {session_id}")
        return True

    async def _retrieve_quietly(self, session_id: str, run_id: str, event_id: str) -> RemoteRun | None:
        try:
            return await self.provider.retrieve_run(session_id, run_id)
        except AssistantServiceError as e:
            logger.warning(f"[{event_id}] Could not retrieve run {run_id}: {e}")
            return None

    def _require_entry(self, thread_id: str) -> ThreadEntry:
        entry = self.registry.get(thread_id)
        if entry is None or entry.session_id is None:
            raise LookupError(f"Thread {thread_id} is not bridged")
        return entry
