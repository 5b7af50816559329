"""Assistant service providers for threadbridge."""

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
from threadbridge.providers.openai_assistants import OpenAIAssistantProvider

__all__ = [
    "AssistantProvider",
    "AssistantServiceError",
    "RemoteNotFoundError",
    "RemoteRun",
    "RemoteMessage",
    "SessionMessage",
    "TextBlock",
    "Citation",
    "OpenAIAssistantProvider",
]
