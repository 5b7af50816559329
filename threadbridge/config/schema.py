"""Configuration schema using Pydantic."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Idle sweep cadence and TTL are fixed; the reaper takes them as arguments
# so tests can shrink them.
IDLE_SWEEP_INTERVAL_S = 60 * 60
IDLE_TTL_S = 24 * 60 * 60


class DiscordConfig(BaseModel):
    """Discord channel configuration."""
    token: str = ""  # Bot token from the developer portal


class OpenAIConfig(BaseModel):
    """Assistant service configuration."""
    api_key: str = ""  # Falls back to OPENAI_API_KEY when empty
    project_id: str = ""
    api_base: str | None = None
    assistant_id: str = ""
    vector_store_id: str = ""  # file_search resource bound to every session


class BridgeConfig(BaseModel):
    """Conversation bridge behaviour."""
    replay_window: int = Field(default=30, ge=1, le=100)
    locale: Literal["en", "ja"] = "en"
    poll_interval_s: float = Field(default=1.0, gt=0, le=30)
    run_timeout_s: float = Field(default=600.0, gt=0)

    @field_validator("locale", mode="before")
    @classmethod
    def normalize_locale(cls, value: str) -> str:
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized:
                return normalized
        return "en"


class ReaperConfig(BaseModel):
    """Idle thread cleanup."""
    with_archival: bool = False  # also post a notice and archive the chat thread


class Config(BaseSettings):
    """Root configuration for threadbridge."""

    model_config = SettingsConfigDict(
        env_prefix="THREADBRIDGE_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    openai: OpenAIConfig = Field(default_factory=OpenAIConfig)
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    reaper: ReaperConfig = Field(default_factory=ReaperConfig)

    def missing_required(self) -> list[str]:
        """Names of settings that must be present before the bridge can start."""
        missing = []
        if not self.discord.token:
            missing.append("discord.token")
        if not self.openai.assistant_id:
            missing.append("openai.assistant_id")
        return missing
