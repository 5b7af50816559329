"""Discord channel implementation using discord.py."""

import re
from contextlib import contextmanager
from typing import Iterator

import discord
from loguru import logger

from threadbridge.bus.events import ChatMessage, InboundMessage
from threadbridge.bus.queue import MessageBus
from threadbridge.channels.base import ChannelError, ChannelNotFoundError, ChatChannel
from threadbridge.config.schema import DiscordConfig

_MENTION_RE = re.compile(r"<@!?(\d+)>")

# Only user-authored content is bridged; system notices (pins, thread
# creation, member joins) are skipped.
_BRIDGED_TYPES = {discord.MessageType.default, discord.MessageType.reply}


def strip_mention(text: str, user_id: str) -> str:
    """Remove mentions of ``user_id`` from message markup."""
    if not text:
        return ""
    stripped = _MENTION_RE.sub(lambda m: "" if m.group(1) == user_id else m.group(0), text)
    return re.sub(r"[ \t]{2,}", " ", stripped).strip()


class _BridgeClient(discord.Client):
    """discord.Client forwarding gateway events to the channel."""

    def __init__(self, channel: "DiscordChannel", **kwargs):
        super().__init__(**kwargs)
        self._channel = channel

    async def on_ready(self) -> None:
        logger.info(f"Discord logged in as {self.user}")

    async def on_message(self, message: discord.Message) -> None:
        await self._channel._on_message(message)


class DiscordChannel(ChatChannel):
    """
    Discord channel using the gateway websocket.

    Threads are Discord threads; the parent text channel is where a mention
    starts a new one.
    """

    name = "discord"
    max_message_length = 2000
    max_thread_name_length = 100

    def __init__(self, config: DiscordConfig, bus: MessageBus):
        super().__init__(config, bus)
        self.config: DiscordConfig = config
        intents = discord.Intents.default()
        intents.message_content = True
        self._client = _BridgeClient(self, intents=intents)

    @property
    def bot_user_id(self) -> str:
        user = self._client.user
        return str(user.id) if user else ""

    async def start(self) -> None:
        """Log in and run the gateway connection until stopped."""
        if not self.config.token:
            logger.error("Discord bot token not configured")
            return

        logger.info("Starting Discord client...")
        await self._client.start(self.config.token)

    async def stop(self) -> None:
        """Close the gateway connection."""
        if not self._client.is_closed():
            logger.info("Stopping Discord client...")
            await self._client.close()

    async def send(self, thread_id: str, text: str) -> ChatMessage:
        thread = await self._resolve_channel(thread_id)
        with self._platform_call(f"send to {thread_id}"):
            message = await thread.send(text)
        return self._to_chat_message(message)

    async def edit(self, thread_id: str, message_id: str, text: str) -> None:
        thread = await self._resolve_channel(thread_id)
        with self._platform_call(f"edit {message_id}"):
            await thread.get_partial_message(int(message_id)).edit(content=text)

    async def delete(self, thread_id: str, message_id: str) -> None:
        thread = await self._resolve_channel(thread_id)
        with self._platform_call(f"delete {message_id}"):
            await thread.get_partial_message(int(message_id)).delete()

    async def history(
        self,
        thread_id: str,
        limit: int,
        before: str | None = None,
    ) -> list[ChatMessage]:
        thread = await self._resolve_channel(thread_id)
        kwargs: dict = {"limit": limit}
        if before:
            kwargs["before"] = discord.Object(id=int(before))

        with self._platform_call(f"history of {thread_id}"):
            fetched = [m async for m in thread.history(**kwargs)]

        # history() yields newest first
        fetched.reverse()
        return [
            self._to_chat_message(m)
            for m in fetched
            if m.type in _BRIDGED_TYPES and m.content
        ]

    async def create_thread(self, channel_id: str, message_id: str, name: str) -> str:
        channel = await self._resolve_channel(channel_id)
        with self._platform_call(f"create thread in {channel_id}"):
            thread = await channel.get_partial_message(int(message_id)).create_thread(
                name=name[: self.max_thread_name_length]
            )
        return str(thread.id)

    async def archive(self, thread_id: str, reason: str) -> None:
        thread = await self._resolve_channel(thread_id)
        if not isinstance(thread, discord.Thread):
            logger.debug(f"Channel {thread_id} is not a thread; nothing to archive")
            return
        with self._platform_call(f"archive {thread_id}"):
            await thread.edit(archived=True, reason=reason)

    async def notify_archived(self, thread_id: str, text: str) -> None:
        await self.send(thread_id, text)

    async def _on_message(self, message: discord.Message) -> None:
        """Translate a gateway message into a bus event."""
        me = self._client.user
        bot_id = str(me.id) if me else ""
        channel = message.channel

        thread_id: str | None = None
        owner_id: str | None = None
        if isinstance(channel, discord.Thread):
            thread_id = str(channel.id)
            owner_id = str(channel.owner_id) if channel.owner_id else None
            channel_id = str(channel.parent_id)
        else:
            channel_id = str(channel.id)

        mentions_bot = bool(bot_id) and any(str(u.id) == bot_id for u in message.mentions)

        logger.debug(f"Discord message {message.id} from {message.author.id}: {message.content[:50]}...")

        await self._handle_message(
            InboundMessage(
                event_id=str(message.id),
                channel_id=channel_id,
                thread_id=thread_id,
                author_id=str(message.author.id),
                author_name=message.author.display_name,
                content=strip_mention(message.content, bot_id),
                mentions_bot=mentions_bot,
                from_bot=message.author.bot,
                thread_owner_id=owner_id,
                created_at=message.created_at,
            )
        )

    async def _resolve_channel(self, channel_id: str):
        cached = self._client.get_channel(int(channel_id))
        if cached is not None:
            return cached
        with self._platform_call(f"fetch channel {channel_id}"):
            return await self._client.fetch_channel(int(channel_id))

    def _to_chat_message(self, message: discord.Message) -> ChatMessage:
        return ChatMessage(
            id=str(message.id),
            author_id=str(message.author.id),
            author_name=message.author.display_name,
            content=strip_mention(message.content, self.bot_user_id),
            created_at=message.created_at,
        )

    @staticmethod
    @contextmanager
    def _platform_call(action: str) -> Iterator[None]:
        try:
            yield
        except discord.NotFound as e:
            raise ChannelNotFoundError(f"Discord {action}: {e}") from e
        except discord.HTTPException as e:
            raise ChannelError(f"Discord {action}: {e}") from e
