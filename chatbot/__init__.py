"""Session-scoped chat service streaming replies from a hosted Claude model.

The package wires a chat-completions capable model endpoint (Bedrock by
default) with bounded per-conversation memory. The primary entry points are
``chatbot.api.create_app`` for running the HTTP service and
``chatbot.service.ChatService`` for embedding the chat engine directly into
Python code.
"""

from .config import ChatConfig, ChatLLMConfig, MemoryConfig
from .memory import ConversationStore, Message
from .service import ChatService
from .sessions import SessionManager

__all__ = [
    "ChatConfig",
    "ChatLLMConfig",
    "ChatService",
    "ConversationStore",
    "MemoryConfig",
    "Message",
    "SessionManager",
]
