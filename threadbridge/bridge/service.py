"""Bridge: the per-event pipeline between a chat channel and the assistant."""

import asyncio
import time
from typing import Callable

from loguru import logger

from threadbridge.bridge.messages import placeholder_text, thread_name
from threadbridge.bridge.render import ResponseRenderer
from threadbridge.bridge.runs import RunCoordinator, RunOutcome
from threadbridge.bridge.sync import MessageSync
from threadbridge.bus.events import InboundMessage
from threadbridge.bus.queue import MessageBus
from threadbridge.channels.base import ChannelError, ChatChannel
from threadbridge.providers.base import AssistantProvider, AssistantServiceError, RemoteNotFoundError
from threadbridge.session.registry import ThreadRegistry


class Bridge:
    """
    Consumes inbound chat events and drives each through the pipeline.

    Every event runs as its own task:
    1. Resolve the thread (start one for a channel mention)
    2. Under the thread's scope: plan the replay, supersede the active run,
       push missing messages, post the placeholder and start a run
    3. Poll the run without holding the scope
    4. Under the scope again: render and deliver the output

    One attempt per event; failures are logged with the event id and the
    next message in the thread is the natural retry.
    """

    def __init__(
        self,
        bus: MessageBus,
        channel: ChatChannel,
        provider: AssistantProvider,
        registry: ThreadRegistry | None = None,
        replay_window: int = 30,
        locale: str = "en",
        poll_interval_s: float = 1.0,
        run_timeout_s: float = 600.0,
        cancel_grace_s: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self.bus = bus
        self.channel = channel
        self.provider = provider
        self.registry = registry or ThreadRegistry()
        self.clock = clock
        self.sync = MessageSync(
            self.registry,
            channel,
            provider,
            replay_window=replay_window,
            clock=clock,
        )
        self.renderer = ResponseRenderer(provider)
        self.runs = RunCoordinator(
            self.registry,
            channel,
            provider,
            self.sync,
            self.renderer,
            placeholder_text=placeholder_text(locale),
            poll_interval_s=poll_interval_s,
            run_timeout_s=run_timeout_s,
            cancel_grace_s=cancel_grace_s,
        )
        self._running = False
        self._tasks: set[asyncio.Task[None]] = set()

    async def run(self) -> None:
        """Consume the bus, one task per inbound event."""
        self._running = True
        logger.info("Bridge started")

        while self._running:
            try:
                msg = await asyncio.wait_for(self.bus.consume_inbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
            except asyncio.CancelledError:
                break

            self.submit(msg)

    def submit(self, msg: InboundMessage) -> asyncio.Task[None]:
        """Start processing an event in the background."""
        task = asyncio.create_task(self.handle(msg))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def stop(self) -> None:
        """Stop consuming and cancel in-flight events."""
        self._running = False
        for task in list(self._tasks):
            if not task.done():
                task.cancel()

    async def drain(self) -> None:
        """Wait for in-flight events to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def handle(self, msg: InboundMessage) -> None:
        """Process one event; never raises."""
        try:
            await self._process(msg)
        except asyncio.CancelledError:
            logger.info(f"[{msg.event_id}] Processing cancelled")
        except (AssistantServiceError, ChannelError) as e:
            logger.error(f"[{msg.event_id}] Remote call failed, dropping event: {e}")
        except Exception:
            logger.exception(f"[{msg.event_id}] Unexpected error while handling message")

    async def _process(self, msg: InboundMessage) -> None:
        if msg.from_bot:
            return

        thread_id = await self._resolve_thread(msg)
        if thread_id is None:
            return

        event_id = msg.event_id
        trigger = msg.as_chat_message()

        async with self.registry.scope(thread_id):
            entry = self.registry.get(thread_id)
            if entry is not None:
                entry.touch(self.clock())

            plan = await self.sync.plan(thread_id, trigger, event_id)
            if plan.is_empty:
                logger.info(f"[{event_id}] Message already reflected in thread {thread_id}; skipping")
                return

            await self.runs.supersede(thread_id, event_id)
            try:
                entry = await self.sync.apply(plan, event_id)
            except RemoteNotFoundError:
                # Session vanished remotely; the next qualifying message re-adopts.
                self.registry.delete(thread_id)
                logger.warning(f"[{event_id}] Session for thread {thread_id} is gone; entry dropped")
                return

            session_id = entry.session_id
            active = await self.runs.begin(thread_id, event_id)

        try:
            outcome: RunOutcome = await self.runs.await_completion(session_id, active.run_id, event_id)

            async with self.registry.scope(thread_id):
                await self.runs.finish(thread_id, active, outcome, event_id)
        finally:
            self.runs.forget(active.run_id)

    async def _resolve_thread(self, msg: InboundMessage) -> str | None:
        """Find or start the thread an event belongs to; None if it does not qualify."""
        if not msg.in_thread:
            if not msg.mentions_bot:
                return None
            thread_id = await self.channel.create_thread(
                msg.channel_id,
                msg.event_id,
                thread_name(msg.content, self.channel.max_thread_name_length),
            )
            logger.info(f"[{msg.event_id}] Started thread {thread_id} for message from {msg.author_id}")
            return thread_id

        thread_id = msg.thread_id
        if thread_id in self.registry:
            return thread_id

        owned = bool(msg.thread_owner_id) and msg.thread_owner_id == self.channel.bot_user_id
        if msg.mentions_bot or owned:
            logger.info(f"[{msg.event_id}] Adopting thread {thread_id}")
            return thread_id

        logger.debug(f"[{msg.event_id}] Thread {thread_id} is not bridged; ignoring")
        return None
