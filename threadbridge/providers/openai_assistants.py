"""OpenAI Assistants implementation of the assistant service."""

from contextlib import contextmanager
from typing import Any, Iterator

from loguru import logger
from openai import AsyncOpenAI, NotFoundError, OpenAIError

from threadbridge.providers.base import (
    AssistantProvider,
    AssistantServiceError,
    Citation,
    RemoteMessage,
    RemoteNotFoundError,
    RemoteRun,
    SessionMessage,
    TextBlock,
)

# threads.create accepts at most this many seed messages.
MAX_SEED_MESSAGES = 32


class OpenAIAssistantProvider(AssistantProvider):
    """
    Assistant service backed by the OpenAI Assistants API.

    Sessions are assistant threads. Every session gets the configured vector
    store bound as its file_search resource.
    """

    def __init__(
        self,
        assistant_id: str,
        api_key: str | None = None,
        project_id: str | None = None,
        api_base: str | None = None,
        vector_store_id: str | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self.assistant_id = assistant_id
        self.vector_store_id = vector_store_id or None
        self._client = client or AsyncOpenAI(
            api_key=api_key or None,
            project=project_id or None,
            base_url=api_base or None,
        )

    async def verify(self) -> str:
        with self._service_call(f"retrieve assistant {self.assistant_id}"):
            assistant = await self._client.beta.assistants.retrieve(self.assistant_id)
        return assistant.name or assistant.id

    async def create_session(self, messages: list[SessionMessage] | None = None) -> str:
        messages = list(messages or [])
        kwargs: dict[str, Any] = {}
        if messages:
            kwargs["messages"] = [
                {"role": m.role, "content": m.content} for m in messages[:MAX_SEED_MESSAGES]
            ]
        if self.vector_store_id:
            kwargs["tool_resources"] = {
                "file_search": {"vector_store_ids": [self.vector_store_id]}
            }

        with self._service_call("create thread"):
            thread = await self._client.beta.threads.create(**kwargs)

        # Seeds beyond the create limit go in one by one, still oldest first.
        try:
            for message in messages[MAX_SEED_MESSAGES:]:
                await self.append_message(thread.id, message)
        except AssistantServiceError:
            await self._discard_thread(thread.id)
            raise
        return thread.id

    async def append_message(self, session_id: str, message: SessionMessage) -> str:
        with self._service_call(f"append to thread {session_id}"):
            created = await self._client.beta.threads.messages.create(
                session_id,
                role=message.role,
                content=message.content,
            )
        return created.id

    async def create_run(self, session_id: str) -> RemoteRun:
        with self._service_call(f"create run in thread {session_id}"):
            run = await self._client.beta.threads.runs.create(
                thread_id=session_id,
                assistant_id=self.assistant_id,
            )
        return RemoteRun(id=run.id, session_id=session_id, status=run.status)

    async def retrieve_run(self, session_id: str, run_id: str) -> RemoteRun:
        with self._service_call(f"retrieve run {run_id}"):
            run = await self._client.beta.threads.runs.retrieve(run_id, thread_id=session_id)
        return RemoteRun(id=run.id, session_id=session_id, status=run.status)

    async def cancel_run(self, session_id: str, run_id: str) -> RemoteRun:
        with self._service_call(f"cancel run {run_id}"):
            run = await self._client.beta.threads.runs.cancel(run_id, thread_id=session_id)
        return RemoteRun(id=run.id, session_id=session_id, status=run.status)

    async def list_messages(self, session_id: str, run_id: str | None = None) -> list[RemoteMessage]:
        kwargs: dict[str, Any] = {"order": "asc", "limit": 100}
        if run_id:
            kwargs["run_id"] = run_id

        out: list[RemoteMessage] = []
        with self._service_call(f"list messages of thread {session_id}"):
            async for message in self._client.beta.threads.messages.list(session_id, **kwargs):
                out.append(self._parse_message(message))
        return out

    async def delete_session(self, session_id: str) -> None:
        with self._service_call(f"delete thread {session_id}"):
            await self._client.beta.threads.delete(session_id)

    async def file_name(self, file_id: str) -> str:
        with self._service_call(f"retrieve file {file_id}"):
            file = await self._client.files.retrieve(file_id)
        return file.filename

    async def _discard_thread(self, thread_id: str) -> None:
        """Best-effort delete of a thread that was only partly seeded."""
        try:
            await self._client.beta.threads.delete(thread_id)
            logger.warning(f"Deleted partly seeded thread {thread_id}")
        except OpenAIError as e:
            logger.warning(f"Could not delete partly seeded thread {thread_id}: {e}")

    @staticmethod
    def _parse_message(message: Any) -> RemoteMessage:
        blocks: list[TextBlock] = []
        for block in message.content or []:
            if block.type != "text":
                continue
            citations = [
                Citation(
                    text=annotation.text,
                    source_id=annotation.file_citation.file_id,
                    start_index=annotation.start_index,
                    end_index=annotation.end_index,
                )
                for annotation in block.text.annotations or []
                if annotation.type == "file_citation"
            ]
            blocks.append(TextBlock(text=block.text.value, citations=citations))

        return RemoteMessage(
            id=message.id,
            role=message.role,
            run_id=message.run_id,
            created_at=int(message.created_at or 0),
            blocks=blocks,
        )

    @staticmethod
    @contextmanager
    def _service_call(action: str) -> Iterator[None]:
        try:
            yield
        except NotFoundError as e:
            raise RemoteNotFoundError(f"OpenAI {action}: {e}") from e
        except OpenAIError as e:
            raise AssistantServiceError(f"OpenAI {action}: {e}") from e
