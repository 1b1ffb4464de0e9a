"""Model gateway: the one seam between the chat service and the hosted model."""

from __future__ import annotations

import json
import logging
from typing import Dict, Iterator, List, Optional, Protocol, Sequence

import requests

from .config import ChatLLMConfig
from .errors import GatewayError
from .memory import Message

logger = logging.getLogger(__name__)


class ModelGateway(Protocol):
    """Anything able to answer (system prompt, history, new message)."""

    def complete(self, system_prompt: str, history: Sequence[Message], user_message: str) -> str:
        ...

    def stream(self, system_prompt: str, history: Sequence[Message], user_message: str) -> Iterator[str]:
        ...


def build_messages(system_prompt: str, history: Sequence[Message], user_message: str) -> List[Dict[str, str]]:
    messages: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
    messages.extend(msg.to_dict() for msg in history)
    messages.append({"role": "user", "content": user_message})
    return messages


class ChatLLMClient:
    """Thin wrapper around a chat-completions endpoint with streaming support.

    Used when :class:`~chatbot.config.ChatLLMConfig` names an ``endpoint``:
    a local model server, an access gateway or any other server speaking
    the chat-completions protocol.
    """

    def __init__(
        self,
        config: ChatLLMConfig,
        *,
        model_kwargs: Optional[Dict[str, object]] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not config.endpoint:
            raise ValueError("a chat-completions endpoint is required")
        self.config = config
        self.model_kwargs = dict(model_kwargs or {})
        self.http = session or requests.Session()

    def stream(
        self,
        system_prompt: str,
        history: Sequence[Message],
        user_message: str,
    ) -> Iterator[str]:
        """Yield text fragments from the model as they arrive.

        The request is sent on the first ``next()``; closing the iterator
        closes the HTTP response.
        """
        payload = self._payload(build_messages(system_prompt, history, user_message), True)
        logger.info("Streaming chat completion from %s using model %s", self.config.endpoint, self.config.model)

        try:
            with self.http.post(
                self.config.endpoint,
                json=payload,
                headers=self._headers(),
                stream=True,
                timeout=self.config.request_timeout,
            ) as response:
                self._raise_for_status(response)
                for raw_line in response.iter_lines():
                    if not raw_line:
                        continue
                    line = raw_line.decode("utf-8", errors="replace").strip() if isinstance(raw_line, bytes) else raw_line.strip()
                    if line.startswith("data:"):
                        line = line[5:].strip()
                    if not line or line == "[DONE]":
                        continue

                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug("Skipping non-JSON stream line: %s", line)
                        continue

                    self._raise_for_error_chunk(chunk)
                    token = self._extract_delta(chunk)
                    if token:
                        yield token
        except requests.RequestException as exc:
            raise GatewayError(f"Model stream failed: {exc}") from exc

    def complete(
        self,
        system_prompt: str,
        history: Sequence[Message],
        user_message: str,
    ) -> str:
        """Return a full completion (no streaming)."""
        messages = build_messages(system_prompt, history, user_message)
        payload = self._payload(messages, False)

        logger.debug("Requesting non-streaming completion for %d message(s)", len(messages))
        try:
            response = self.http.post(
                self.config.endpoint,
                json=payload,
                headers=self._headers(),
                timeout=self.config.request_timeout,
            )
            self._raise_for_status(response)
            data = response.json()
        except requests.RequestException as exc:
            raise GatewayError(f"Model call failed: {exc}") from exc
        except ValueError as exc:
            raise GatewayError("Model returned a non-JSON response") from exc

        if not isinstance(data, dict):
            raise GatewayError(f"Model returned an unexpected {type(data).__name__} payload")
        self._raise_for_error_chunk(data)
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        return message.get("content", "") or ""

    def _payload(self, messages: List[Dict[str, str]], stream: bool) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "model": self.config.model,
            "messages": messages,
            "stream": stream,
        }
        if self.model_kwargs:
            payload.update(self.model_kwargs)
        return payload

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    @staticmethod
    def _raise_for_status(response: requests.Response) -> None:
        if response.status_code >= 400:
            raise GatewayError(
                f"Model endpoint returned HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

    @staticmethod
    def _raise_for_error_chunk(payload: Dict[str, object]) -> None:
        error = payload.get("error") if isinstance(payload, dict) else None
        if not error:
            return
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise GatewayError(f"Model endpoint reported an error: {message}")

    @staticmethod
    def _extract_delta(payload: Dict[str, object]) -> str:
        try:
            choices = payload.get("choices") or []
            if not choices:
                return ""
            delta = choices[0].get("delta") or {}
            content = delta.get("content") or ""
            return str(content)
        except (AttributeError, IndexError, TypeError):
            logger.debug("Failed to parse stream payload: %s", payload, exc_info=True)
            return ""
