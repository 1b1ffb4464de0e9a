"""Conversation id issuance."""

from __future__ import annotations

import uuid


class SessionManager:
    """Hands out fresh conversation ids.

    Issuing an id does not touch the conversation store; a conversation only
    comes into existence when its first exchange is committed.
    """

    @staticmethod
    def new_session() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def is_valid(session_id: str) -> bool:
        """Return True when ``session_id`` is a canonical UUID string."""
        try:
            return str(uuid.UUID(session_id)) == session_id.lower()
        except (ValueError, AttributeError, TypeError):
            return False
