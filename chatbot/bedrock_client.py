"""Model gateway backed by the Bedrock Converse API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import ChatLLMConfig
from .errors import GatewayError
from .memory import ASSISTANT, Message

logger = logging.getLogger(__name__)

# chat-completions style option -> Converse inferenceConfig field
INFERENCE_KEYS = {
    "max_tokens": "maxTokens",
    "temperature": "temperature",
    "top_p": "topP",
    "stop": "stopSequences",
}


def build_converse_messages(history: Sequence[Message], user_message: str) -> List[Dict[str, Any]]:
    """Render history plus the new message as Converse ``messages``.

    Converse rejects empty text blocks, so an exchange whose reply came back
    empty is left out together with its question.
    """
    messages: List[Dict[str, Any]] = []
    pending: Optional[Message] = None
    for message in history:
        if message.role != ASSISTANT:
            pending = message
            continue
        if pending is not None and message.content:
            messages.append({"role": pending.role, "content": [{"text": pending.content}]})
            messages.append({"role": message.role, "content": [{"text": message.content}]})
        pending = None
    messages.append({"role": "user", "content": [{"text": user_message}]})
    return messages


def _status_code(exc: Exception) -> Optional[int]:
    if isinstance(exc, ClientError):
        return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return None


class BedrockConverseClient:
    """Call a Bedrock-hosted model through ``converse`` / ``converse_stream``.

    Credentials come from the usual AWS chain (environment, profile, instance
    role); only the region and model id are configured here.
    """

    def __init__(
        self,
        config: ChatLLMConfig,
        *,
        model_kwargs: Optional[Dict[str, object]] = None,
        client: Any = None,
    ) -> None:
        self.config = config
        self.inference_config = {
            INFERENCE_KEYS[key]: value for key, value in (model_kwargs or {}).items() if key in INFERENCE_KEYS
        }
        self.client = client if client is not None else boto3.client(
            "bedrock-runtime",
            region_name=config.region,
            config=Config(read_timeout=config.request_timeout, retries={"max_attempts": 1}),
        )

    def stream(self, system_prompt: str, history: Sequence[Message], user_message: str) -> Iterator[str]:
        """Yield text deltas as they arrive; the call is made on the first ``next()``."""
        request = self._request(system_prompt, history, user_message)
        logger.info("Streaming Bedrock converse reply using model %s", self.config.model)

        events = None
        try:
            events = self.client.converse_stream(**request)["stream"]
            for event in events:
                self._raise_for_error_event(event)
                delta = event.get("contentBlockDelta", {}).get("delta", {})
                text = delta.get("text")
                if text:
                    yield text
        except (BotoCoreError, ClientError) as exc:
            raise GatewayError(f"Bedrock stream failed: {exc}", status_code=_status_code(exc)) from exc
        finally:
            close = getattr(events, "close", None)
            if close is not None:
                close()

    def complete(self, system_prompt: str, history: Sequence[Message], user_message: str) -> str:
        """Return the full reply text (no streaming)."""
        request = self._request(system_prompt, history, user_message)
        logger.debug("Requesting Bedrock converse reply for %d message(s)", len(request["messages"]))
        try:
            response = self.client.converse(**request)
        except (BotoCoreError, ClientError) as exc:
            raise GatewayError(f"Bedrock call failed: {exc}", status_code=_status_code(exc)) from exc

        content = response.get("output", {}).get("message", {}).get("content") or []
        return "".join(block.get("text", "") for block in content if isinstance(block, dict))

    def _request(self, system_prompt: str, history: Sequence[Message], user_message: str) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            "modelId": self.config.model,
            "messages": build_converse_messages(history, user_message),
            "system": [{"text": system_prompt}],
        }
        if self.inference_config:
            request["inferenceConfig"] = dict(self.inference_config)
        return request

    @staticmethod
    def _raise_for_error_event(event: Dict[str, Any]) -> None:
        for key, value in event.items():
            if key.endswith("Exception"):
                message = value.get("message") if isinstance(value, dict) else value
                raise GatewayError(f"Bedrock stream reported {key}: {message}")
