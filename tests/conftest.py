from __future__ import annotations

from typing import Iterator, List, Optional, Sequence, Tuple

import pytest
from fastapi.testclient import TestClient

from chatbot.api import create_app
from chatbot.config import ChatConfig
from chatbot.errors import GatewayError
from chatbot.memory import ConversationStore, Message
from chatbot.service import ChatService


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGateway:
    """Scripted model gateway.

    ``fail_after`` is the number of fragments emitted before the stream
    raises; ``None`` means the stream completes normally.
    """

    def __init__(
        self,
        fragments: Sequence[str] = ("Hel", "lo"),
        *,
        fail_after: Optional[int] = None,
        fail_on_call: bool = False,
    ) -> None:
        self.fragments = list(fragments)
        self.fail_after = fail_after
        self.fail_on_call = fail_on_call
        self.calls: List[Tuple[str, Tuple[Message, ...], str]] = []
        self.closed = False

    def stream(self, system_prompt: str, history: Sequence[Message], user_message: str) -> Iterator[str]:
        self.calls.append((system_prompt, tuple(history), user_message))
        if self.fail_on_call:
            raise GatewayError("endpoint unreachable")
        return self._fragments()

    def complete(self, system_prompt: str, history: Sequence[Message], user_message: str) -> str:
        self.calls.append((system_prompt, tuple(history), user_message))
        if self.fail_on_call or self.fail_after is not None:
            raise GatewayError("endpoint unreachable", status_code=503)
        return "".join(self.fragments)

    def _fragments(self) -> Iterator[str]:
        try:
            for emitted, fragment in enumerate(self.fragments):
                if self.fail_after is not None and emitted == self.fail_after:
                    raise GatewayError("stream interrupted")
                yield fragment
            if self.fail_after is not None:
                raise GatewayError("stream interrupted")
        finally:
            self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> ConversationStore:
    return ConversationStore(20, idle_expiry_seconds=30 * 60, max_sessions=1000, timer=clock)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def service(store: ConversationStore, gateway: FakeGateway) -> ChatService:
    return ChatService(ChatConfig(), store=store, gateway=gateway)


@pytest.fixture
def client(service: ChatService) -> TestClient:
    return TestClient(create_app(service=service))
