"""In-memory stand-ins for the chat platform and the assistant service."""

import asyncio
from datetime import datetime, timedelta, timezone
from itertools import count

from threadbridge.bus.events import ChatMessage, InboundMessage
from threadbridge.bus.queue import MessageBus
from threadbridge.channels.base import ChannelError, ChannelNotFoundError, ChatChannel
from threadbridge.providers.base import (
    AssistantProvider,
    AssistantServiceError,
    RemoteMessage,
    RemoteNotFoundError,
    RemoteRun,
    SessionMessage,
    TextBlock,
)

BOT_ID = "bot"
_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeChannel(ChatChannel):
    name = "fake"

    def __init__(self, bus: MessageBus | None = None, max_message_length: int = 2000):
        super().__init__(config=None, bus=bus or MessageBus())
        self.max_message_length = max_message_length
        self.threads: dict[str, list[ChatMessage]] = {}
        self.by_id: dict[str, ChatMessage] = {}
        self.thread_names: dict[str, str] = {}
        self.edits: list[tuple[str, str, str]] = []
        self.deleted: list[str] = []
        self.archived: list[str] = []
        self.notices: list[tuple[str, str]] = []
        self.fail_delete = False
        self.fail_archive = False
        self._ids = count(1)
        self._threads = count(1)
        self._tick = count(1)

    @property
    def bot_user_id(self) -> str:
        return BOT_ID

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    def _new_message(self, author_id: str, author_name: str, content: str) -> ChatMessage:
        message = ChatMessage(
            id=f"m{next(self._ids):04d}",
            author_id=author_id,
            author_name=author_name,
            content=content,
            created_at=_EPOCH + timedelta(seconds=next(self._tick)),
        )
        self.by_id[message.id] = message
        return message

    def post(self, thread_id: str, content: str, author: str = "alice", **extra) -> InboundMessage:
        """A user posts in a thread; returns the gateway event."""
        message = self._new_message(author, author.title(), content)
        self.threads.setdefault(thread_id, []).append(message)
        return InboundMessage(
            event_id=message.id,
            channel_id="general",
            thread_id=thread_id,
            author_id=author,
            author_name=author.title(),
            content=content,
            created_at=message.created_at,
            **extra,
        )

    def post_in_channel(self, content: str, author: str = "alice", mentions_bot: bool = True) -> InboundMessage:
        """A user posts in the parent channel (not part of any thread history)."""
        message = self._new_message(author, author.title(), content)
        return InboundMessage(
            event_id=message.id,
            channel_id="general",
            author_id=author,
            author_name=author.title(),
            content=content,
            mentions_bot=mentions_bot,
            created_at=message.created_at,
        )

    def contents(self, thread_id: str) -> list[str]:
        return [m.content for m in self.threads.get(thread_id, [])]

    async def send(self, thread_id: str, text: str) -> ChatMessage:
        message = self._new_message(BOT_ID, "Bridge", text)
        self.threads.setdefault(thread_id, []).append(message)
        return message

    async def edit(self, thread_id: str, message_id: str, text: str) -> None:
        message = self.by_id.get(message_id)
        if message is None or message not in self.threads.get(thread_id, []):
            raise ChannelNotFoundError(f"message {message_id} not found")
        message.content = text
        self.edits.append((thread_id, message_id, text))

    async def delete(self, thread_id: str, message_id: str) -> None:
        if self.fail_delete:
            raise ChannelError("delete failed")
        messages = self.threads.get(thread_id, [])
        self.threads[thread_id] = [m for m in messages if m.id != message_id]
        self.deleted.append(message_id)

    async def history(self, thread_id: str, limit: int, before: str | None = None) -> list[ChatMessage]:
        messages = list(self.threads.get(thread_id, []))
        if before is not None:
            pivot = self.by_id[before].sort_key
            messages = [m for m in messages if m.sort_key < pivot]
        return [
            ChatMessage(m.id, m.author_id, m.author_name, m.content, m.created_at)
            for m in messages[-limit:]
        ]

    async def create_thread(self, channel_id: str, message_id: str, name: str) -> str:
        thread_id = f"t{next(self._threads)}"
        self.threads[thread_id] = []
        self.thread_names[thread_id] = name
        return thread_id

    async def archive(self, thread_id: str, reason: str) -> None:
        if self.fail_archive:
            raise ChannelError("archive failed")
        self.archived.append(thread_id)

    async def notify_archived(self, thread_id: str, text: str) -> None:
        self.notices.append((thread_id, text))


class FakeAssistant(AssistantProvider):
    """
    Assistant service double.

    Runs complete on their first status check unless ``hold_runs`` is set,
    in which case they stay in progress until released or cancelled. Like
    the real service, appending to a session with an active run fails.
    """

    def __init__(self):
        self.sessions: dict[str, list[SessionMessage]] = {}
        self.outputs: dict[str, list[RemoteMessage]] = {}
        self.runs: dict[str, RemoteRun] = {}
        self.files: dict[str, str] = {}
        self.replies: list[list[TextBlock]] = []
        self.hold_runs = False
        self.ignore_cancel = False
        self.fail_cancel = False
        self.fail_delete = False
        self.fail_create_session = False
        self.deleted_sessions: list[str] = []
        self.cancelled: list[str] = []
        self._released: set[str] = set()
        self._sessions = count(1)
        self._runs = count(1)
        self._messages = count(1)

    def user_contents(self, session_id: str) -> list[str]:
        return [m.content for m in self.sessions[session_id] if m.role == "user"]

    def release(self, run_id: str) -> None:
        self._released.add(run_id)

    def active_runs(self, session_id: str) -> list[RemoteRun]:
        return [r for r in self.runs.values() if r.session_id == session_id and not r.is_terminal]

    async def verify(self) -> str:
        return "Fake assistant"

    async def create_session(self, messages: list[SessionMessage] | None = None) -> str:
        if self.fail_create_session:
            raise AssistantServiceError("create failed")
        session_id = f"s{next(self._sessions)}"
        self.sessions[session_id] = list(messages or [])
        self.outputs[session_id] = []
        return session_id

    async def append_message(self, session_id: str, message: SessionMessage) -> str:
        if session_id not in self.sessions:
            raise RemoteNotFoundError(f"session {session_id} not found")
        if self.active_runs(session_id):
            raise AssistantServiceError("Can't add messages while a run is active")
        self.sessions[session_id].append(message)
        return f"rm{next(self._messages)}"

    async def create_run(self, session_id: str) -> RemoteRun:
        if session_id not in self.sessions:
            raise RemoteNotFoundError(f"session {session_id} not found")
        run = RemoteRun(id=f"r{next(self._runs)}", session_id=session_id, status="queued")
        self.runs[run.id] = run
        return run

    async def retrieve_run(self, session_id: str, run_id: str) -> RemoteRun:
        run = self.runs.get(run_id)
        if run is None:
            raise RemoteNotFoundError(f"run {run_id} not found")
        if not run.is_terminal and (not self.hold_runs or run_id in self._released):
            self._complete(run)
        elif run.status == "queued":
            run.status = "in_progress"
        return RemoteRun(run.id, run.session_id, run.status)

    async def cancel_run(self, session_id: str, run_id: str) -> RemoteRun:
        if self.fail_cancel:
            raise AssistantServiceError("cancel failed")
        run = self.runs[run_id]
        self.cancelled.append(run_id)
        if not run.is_terminal and not self.ignore_cancel:
            run.status = "cancelled"
        return RemoteRun(run.id, run.session_id, run.status)

    async def list_messages(self, session_id: str, run_id: str | None = None) -> list[RemoteMessage]:
        return [m for m in self.outputs.get(session_id, []) if run_id is None or m.run_id == run_id]

    async def delete_session(self, session_id: str) -> None:
        if self.fail_delete:
            raise AssistantServiceError("delete failed")
        self.sessions.pop(session_id, None)
        self.deleted_sessions.append(session_id)

    async def file_name(self, file_id: str) -> str:
        if file_id not in self.files:
            raise RemoteNotFoundError(f"file {file_id} not found")
        return self.files[file_id]

    def _complete(self, run: RemoteRun) -> None:
        run.status = "completed"
        blocks = self.replies.pop(0) if self.replies else [TextBlock(text=f"answer from {run.id}")]
        self.outputs[run.session_id].append(
            RemoteMessage(
                id=f"out-{run.id}",
                role="assistant",
                run_id=run.id,
                created_at=len(self.outputs[run.session_id]),
                blocks=blocks,
            )
        )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
