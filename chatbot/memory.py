"""In-process conversation memory with a sliding message window.

Each session id maps to an ordered list of :class:`Message` objects. Two
independent retention rules apply:

* a per-conversation window keeps only the most recent ``window_size``
  messages (oldest evicted first);
* a store-wide cache forgets conversations that have not been touched for
  ``idle_expiry_seconds`` and, past ``max_sessions`` tracked conversations,
  evicts the least recently accessed one.

The cache is a :class:`cachetools.TTLCache`. Entries are re-inserted on every
access so the TTL behaves as an expire-after-access policy. Nothing is
persisted; dropping the store (or exiting the process) loses every
conversation.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from cachetools import TTLCache

logger = logging.getLogger(__name__)

USER = "user"
ASSISTANT = "assistant"
ROLES = (USER, ASSISTANT)


@dataclass(frozen=True)
class Message:
    role: str
    content: str

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"role must be one of {ROLES}, got {self.role!r}")

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(USER, content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(ASSISTANT, content)

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class _Conversation:
    messages: List[Message] = field(default_factory=list)
    lock: threading.Lock = field(default_factory=threading.Lock)


class ConversationStore:
    """Session id -> bounded conversation, safe for use from many threads."""

    def __init__(
        self,
        window_size: int = 20,
        *,
        idle_expiry_seconds: float = 30 * 60,
        max_sessions: int = 1000,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        if window_size < 2:
            raise ValueError("window_size must hold at least one user/assistant exchange")
        if max_sessions <= 0:
            raise ValueError("max_sessions must be a positive integer")
        if idle_expiry_seconds <= 0:
            raise ValueError("idle_expiry_seconds must be positive")

        self.window_size = window_size
        self.idle_expiry_seconds = idle_expiry_seconds
        self.max_sessions = max_sessions
        self._cache: TTLCache = TTLCache(maxsize=max_sessions, ttl=idle_expiry_seconds, timer=timer)
        # Guards the cache structure only; appends serialise on the per-conversation lock.
        self._lock = threading.Lock()

    def append(self, session_id: str, message: Message) -> None:
        """Append ``message`` to the session's conversation, creating it if needed."""
        conversation = self._access(session_id, create=True)
        with conversation.lock:
            conversation.messages.append(message)
            self._trim(session_id, conversation)

    def append_turn(self, session_id: str, user_message: Message, assistant_message: Message) -> None:
        """Commit one complete exchange so no other turn can land between its halves."""
        if user_message.role != USER or assistant_message.role != ASSISTANT:
            raise ValueError("a turn is a user message followed by an assistant message")
        conversation = self._access(session_id, create=True)
        with conversation.lock:
            conversation.messages.append(user_message)
            conversation.messages.append(assistant_message)
            self._trim(session_id, conversation)

    def history(self, session_id: str) -> Tuple[Message, ...]:
        """Return the retained messages, oldest first. Unknown sessions are empty."""
        conversation = self._access(session_id, create=False)
        if conversation is None:
            return ()
        with conversation.lock:
            return tuple(conversation.messages)

    def clear(self, session_id: str) -> None:
        with self._lock:
            conversation = self._cache.pop(session_id, None)
        if conversation is None:
            return
        with conversation.lock:
            conversation.messages.clear()
        logger.debug("Cleared conversation %s", session_id)

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._cache

    def _access(self, session_id: str, *, create: bool) -> Optional[_Conversation]:
        with self._lock:
            conversation = self._cache.get(session_id)
            if conversation is None:
                if not create:
                    return None
                conversation = _Conversation()
                logger.debug("Tracking new conversation %s (%d active)", session_id, len(self._cache) + 1)
            # Re-inserting restarts the idle timer and marks the entry most recently used.
            self._cache[session_id] = conversation
            return conversation

    def _trim(self, session_id: str, conversation: _Conversation) -> None:
        overflow = len(conversation.messages) - self.window_size
        if overflow <= 0:
            return
        del conversation.messages[:overflow]
        # A reply whose question was evicted would break the user-first ordering.
        if conversation.messages and conversation.messages[0].role == ASSISTANT:
            del conversation.messages[0]
        logger.debug(
            "Trimmed conversation %s to %d message(s)", session_id, len(conversation.messages)
        )
