"""High level orchestration for chat turns with streaming and memory."""

from __future__ import annotations

import logging
from typing import Dict, Iterator, List, Optional

from .bedrock_client import BedrockConverseClient
from .config import ChatConfig
from .llm_client import ChatLLMClient, ModelGateway
from .memory import ConversationStore, Message

logger = logging.getLogger(__name__)


class ChatService:
    """Core chat engine used by both the API and direct Python consumers.

    The service owns its :class:`ConversationStore` and its model gateway;
    both can be injected for tests or alternative backends.
    """

    def __init__(
        self,
        config: Optional[ChatConfig] = None,
        *,
        store: Optional[ConversationStore] = None,
        gateway: Optional[ModelGateway] = None,
    ) -> None:
        self.config = config or ChatConfig()
        memory = self.config.memory
        if store is None:
            store = ConversationStore(
                memory.window_size,
                idle_expiry_seconds=memory.idle_expiry_seconds,
                max_sessions=memory.max_sessions,
            )
        if gateway is None:
            gateway = self._default_gateway()
        self.store = store
        self.gateway: ModelGateway = gateway

    def stream_chat(self, session_id: str, message: str) -> Iterator[str]:
        """Stream the assistant reply, committing the exchange once it completes.

        Fragments are yielded as soon as the gateway produces them. Upstream
        failures end the stream quietly and leave the history untouched, as
        does a consumer that stops iterating early.
        """
        self._validate(session_id, message)
        history = self.store.history(session_id)

        def generator() -> Iterator[str]:
            parts: List[str] = []
            upstream: Optional[Iterator[str]] = None
            try:
                upstream = iter(self.gateway.stream(self.config.system_prompt, history, message))
                for fragment in upstream:
                    parts.append(fragment)
                    yield fragment
            except Exception:
                if parts:
                    logger.exception(
                        "Model stream failed after %d fragment(s) for session %s; reply not saved",
                        len(parts),
                        session_id,
                    )
                else:
                    logger.exception("Model stream failed before any output for session %s", session_id)
                return
            finally:
                close = getattr(upstream, "close", None)
                if close is not None:
                    close()

            reply = "".join(parts)
            self.store.append_turn(session_id, Message.user(message), Message.assistant(reply))
            logger.info(
                "Completed streamed reply for session %s (%d fragment(s), %d chars)",
                session_id,
                len(parts),
                len(reply),
            )

        return generator()

    def chat(self, session_id: str, message: str) -> str:
        """Return the full assistant reply, or ``""`` when the model call fails."""
        self._validate(session_id, message)
        history = self.store.history(session_id)
        try:
            reply = self.gateway.complete(self.config.system_prompt, history, message)
        except Exception:
            logger.exception("Model call failed for session %s", session_id)
            return ""

        self.store.append_turn(session_id, Message.user(message), Message.assistant(reply))
        logger.info("Completed reply for session %s (%d chars)", session_id, len(reply))
        return reply

    def _default_gateway(self) -> ModelGateway:
        llm = self.config.llm
        if llm.endpoint:
            logger.info("Using chat-completions endpoint %s", llm.endpoint)
            return ChatLLMClient(llm, model_kwargs=self.config.model_kwargs)
        logger.info("Using Bedrock converse in %s", llm.region)
        return BedrockConverseClient(llm, model_kwargs=self.config.model_kwargs)

    def clear_conversation(self, session_id: str) -> None:
        self.store.clear(session_id)
        logger.info("Cleared conversation for session %s", session_id)

    def get_history(self, session_id: str) -> Dict[str, object]:
        """Return the retained conversation for display."""
        return {
            "conversationId": session_id,
            "messages": [msg.to_dict() for msg in self.store.history(session_id)],
        }

    @staticmethod
    def _validate(session_id: str, message: str) -> None:
        if not session_id or not session_id.strip():
            raise ValueError("conversationId is required")
        if not message or not message.strip():
            raise ValueError("message is required")
