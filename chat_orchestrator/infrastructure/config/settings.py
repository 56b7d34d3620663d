"""
Configuration for the chat orchestration service.
Values come from ``CHAT_``-prefixed environment variables or a local .env file.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant embedded in a community server. "
    "Answer concisely. When you need to perform actions or fetch data, respond with JSON "
    '{"message": "...", "actions": [...]} where each action has a "type" and optional "options"; '
    "otherwise respond in plain text."
)


class ChatSettings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CHAT_",
        env_file=".env",
        extra="ignore",
        protected_namespaces=(),
    )

    # History
    max_history_length: int = Field(default=20)  # non-system messages kept per conversation
    conversation_timeout_seconds: float = Field(default=1800)
    max_conversations: int = Field(default=1000)
    sweep_interval_seconds: float = Field(default=180)
    long_term_memory: bool = Field(default=True)
    preload_conversations: bool = Field(default=True)

    # Durable tier, chosen once at startup
    storage_backend: Literal["memory", "file", "document-store"] = Field(default="memory")
    file_storage_path: str = Field(default="data/conversations")
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_namespace: str = Field(default="chat")

    # Model
    model_name: str = Field(default="gpt-4o-mini")
    model_provider: str = Field(default="openai")
    temperature: float = Field(default=0.7)
    max_tokens: int = Field(default=600)
    detail_max_tokens: int = Field(default=1200)
    follow_up_timeout_seconds: float = Field(default=5.0)
    follow_up_max_tokens: int = Field(default=500)
    follow_up_detail_max_tokens: int = Field(default=800)
    max_response_length: int = Field(default=2000)
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT)
    default_locale: str = Field(default="en-US")

    # Summary view
    summary_enabled: bool = Field(default=False)
    summary_recent_messages: int = Field(default=5)
    summary_threshold: int = Field(default=10)
    summary_chars: int = Field(default=2000)

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")
    service_name: str = Field(default="chat-orchestrator")


@lru_cache()
def get_settings() -> ChatSettings:
    return ChatSettings()
