"""Configuration objects for the chat service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

DEFAULT_REGION = "us-east-1"
DEFAULT_MODEL_ID = "anthropic.claude-3-5-sonnet-20240620-v1:0"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass
class ChatLLMConfig:
    """Model endpoint connection details.

    With no ``endpoint`` the model is called through the Bedrock Converse API
    using the standard AWS credential chain; an ``endpoint`` switches to a
    chat-completions server authenticated by ``api_key``.
    """

    region: str = DEFAULT_REGION
    endpoint: str = ""
    model: str = DEFAULT_MODEL_ID
    api_key: Optional[str] = field(default=None, repr=False)
    request_timeout: int = 60


@dataclass
class MemoryConfig:
    """Retention policy for per-session conversation memory."""

    window_size: int = 20
    idle_expiry_minutes: int = 30
    max_sessions: int = 1000

    @property
    def idle_expiry_seconds(self) -> float:
        return self.idle_expiry_minutes * 60.0


@dataclass
class ChatConfig:
    """Runtime controls for chat behaviour."""

    llm: ChatLLMConfig = field(default_factory=ChatLLMConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    system_prompt: str = (
        "You are an AI assistant running inside a terminal-style chat window.\n"
        "- Answer concisely and clearly.\n"
        "- Use markdown code blocks when a code example is needed.\n"
        "- Answer in Korean."
    )
    model_kwargs: Dict[str, object] = field(default_factory=dict)
    log_dir: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ChatConfig":
        """Build a configuration from environment variables, falling back to defaults."""
        region = os.getenv("AWS_REGION") or DEFAULT_REGION
        llm = ChatLLMConfig(
            region=region,
            endpoint=os.getenv("BEDROCK_ENDPOINT", ""),
            model=os.getenv("BEDROCK_MODEL_ID") or DEFAULT_MODEL_ID,
            api_key=os.getenv("AWS_BEARER_TOKEN_BEDROCK") or None,
            request_timeout=_env_int("CHAT_REQUEST_TIMEOUT", 60),
        )
        memory = MemoryConfig(
            window_size=_env_int("CHAT_MEMORY_WINDOW", 20),
            idle_expiry_minutes=_env_int("CHAT_CACHE_IDLE_MINUTES", 30),
            max_sessions=_env_int("CHAT_CACHE_MAX_SESSIONS", 1000),
        )
        return cls(llm=llm, memory=memory, log_dir=os.getenv("CHAT_LOG_DIR") or None)
