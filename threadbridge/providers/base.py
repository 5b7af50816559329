"""Base assistant service interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Literal

Role = Literal["user", "assistant"]

# Remote run statuses after which the run will not change again.
TERMINAL_RUN_STATUSES = frozenset({"completed", "failed", "cancelled", "expired", "incomplete"})
# Statuses in which a run can still be cancelled.
CANCELLABLE_RUN_STATUSES = frozenset({"queued", "in_progress", "requires_action"})


class AssistantServiceError(RuntimeError):
    """An assistant service call failed."""


class RemoteNotFoundError(AssistantServiceError):
    """The session, run or file no longer exists remotely."""


@dataclass
class SessionMessage:
    """A role-tagged message sent to a remote session."""
    role: Role
    content: str


@dataclass
class Citation:
    """A span of output text that cites a retrieval source."""
    text: str  # exact substring of the block text
    source_id: str | None = None  # file id, None when the service gave no source
    start_index: int | None = None
    end_index: int | None = None


@dataclass
class TextBlock:
    """A text content block of an assistant message."""
    text: str
    citations: list[Citation] = field(default_factory=list)


@dataclass
class RemoteMessage:
    """A message read back from a remote session."""
    id: str
    role: str
    run_id: str | None = None
    created_at: int = 0
    blocks: list[TextBlock] = field(default_factory=list)


@dataclass
class RemoteRun:
    """A generation run against a remote session."""
    id: str
    session_id: str
    status: str

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    @property
    def is_cancellable(self) -> bool:
        return self.status in CANCELLABLE_RUN_STATUSES


class AssistantProvider(ABC):
    """
    Abstract base class for stateful assistant services.

    A session is the remote conversation bound to one chat thread; a run is
    one asynchronous generation against it.
    """

    @abstractmethod
    async def verify(self) -> str:
        """Check the configured assistant exists and return its display name."""

    @abstractmethod
    async def create_session(self, messages: list[SessionMessage] | None = None) -> str:
        """
        Create a session, optionally pre-seeded.

        Args:
            messages: Role-tagged messages to seed, oldest first.

        Returns:
            The new session id.
        """

    @abstractmethod
    async def append_message(self, session_id: str, message: SessionMessage) -> str:
        """Append a message to a session and return the remote message id."""

    @abstractmethod
    async def create_run(self, session_id: str) -> RemoteRun:
        """Start a generation run on a session."""

    @abstractmethod
    async def retrieve_run(self, session_id: str, run_id: str) -> RemoteRun:
        """Fetch the current status of a run."""

    @abstractmethod
    async def cancel_run(self, session_id: str, run_id: str) -> RemoteRun:
        """Request cancellation of a run. Advisory: the run may still complete."""

    @abstractmethod
    async def list_messages(self, session_id: str, run_id: str | None = None) -> list[RemoteMessage]:
        """
        List a session's messages, oldest first.

        Args:
            session_id: The session to read.
            run_id: Only return messages produced by this run.
        """

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Release a session."""

    @abstractmethod
    async def file_name(self, file_id: str) -> str:
        """Display name of a retrieval source file."""
