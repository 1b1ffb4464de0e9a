from __future__ import annotations

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from chatbot.bedrock_client import BedrockConverseClient, build_converse_messages
from chatbot.config import ChatConfig, ChatLLMConfig
from chatbot.errors import GatewayError
from chatbot.llm_client import ChatLLMClient
from chatbot.memory import Message
from chatbot.service import ChatService

MODEL = "anthropic.claude-3-5-sonnet-20240620-v1:0"
HISTORY = (Message.user("hi"), Message.assistant("hello"))


class FakeEventStream:
    def __init__(self, events, error=None):
        self.events = list(events)
        self.error = error
        self.closed = False

    def __iter__(self):
        yield from self.events
        if self.error is not None:
            raise self.error

    def close(self):
        self.closed = True


class FakeBedrock:
    def __init__(self, stream=None, error=None):
        self.stream = stream
        self.error = error
        self.requests = []

    def converse_stream(self, **request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return {"ResponseMetadata": {"HTTPStatusCode": 200}, "stream": self.stream}


def _delta(text):
    return {"contentBlockDelta": {"contentBlockIndex": 0, "delta": {"text": text}}}


def _client_error(code, status, operation="ConverseStream"):
    return ClientError(
        {"Error": {"Code": code, "Message": "upstream said no"}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


@pytest.fixture
def runtime():
    client = boto3.client(
        "bedrock-runtime",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stubber:
        yield client, stubber


def test_build_converse_messages_wraps_text_blocks():
    assert build_converse_messages(HISTORY, "again") == [
        {"role": "user", "content": [{"text": "hi"}]},
        {"role": "assistant", "content": [{"text": "hello"}]},
        {"role": "user", "content": [{"text": "again"}]},
    ]


def test_build_converse_messages_skips_exchange_with_empty_reply():
    history = (Message.user("q0"), Message.assistant(""), Message.user("q1"), Message.assistant("a1"))

    assert [m["content"][0]["text"] for m in build_converse_messages(history, "q2")] == ["q1", "a1", "q2"]


def test_complete_calls_converse_with_system_prompt_and_history(runtime):
    client, stubber = runtime
    stubber.add_response(
        "converse",
        {
            "output": {"message": {"role": "assistant", "content": [{"text": "Hel"}, {"text": "lo"}]}},
            "stopReason": "end_turn",
            "usage": {"inputTokens": 12, "outputTokens": 2, "totalTokens": 14},
            "metrics": {"latencyMs": 40},
        },
        {
            "modelId": MODEL,
            "messages": build_converse_messages(HISTORY, "again"),
            "system": [{"text": "sys"}],
            "inferenceConfig": {"maxTokens": 256},
        },
    )
    gateway = BedrockConverseClient(ChatLLMConfig(), model_kwargs={"max_tokens": 256, "seed": 1}, client=client)

    assert gateway.complete("sys", HISTORY, "again") == "Hello"
    stubber.assert_no_pending_responses()


def test_complete_wraps_client_errors(runtime):
    client, stubber = runtime
    stubber.add_client_error("converse", service_error_code="ThrottlingException", http_status_code=429)
    gateway = BedrockConverseClient(ChatLLMConfig(), client=client)

    with pytest.raises(GatewayError) as excinfo:
        gateway.complete("sys", (), "hi")

    assert excinfo.value.status_code == 429


def test_stream_yields_text_deltas_only():
    events = FakeEventStream(
        [
            {"messageStart": {"role": "assistant"}},
            _delta("Hel"),
            {"contentBlockDelta": {"contentBlockIndex": 0, "delta": {"toolUse": {"input": "{}"}}}},
            _delta("lo"),
            {"contentBlockStop": {"contentBlockIndex": 0}},
            {"messageStop": {"stopReason": "end_turn"}},
            {"metadata": {"usage": {"inputTokens": 3, "outputTokens": 2, "totalTokens": 5}}},
        ]
    )
    bedrock = FakeBedrock(events)
    gateway = BedrockConverseClient(ChatLLMConfig(model="my-model"), client=bedrock)

    assert list(gateway.stream("sys", HISTORY, "again")) == ["Hel", "lo"]
    assert events.closed
    request = bedrock.requests[0]
    assert request["modelId"] == "my-model"
    assert request["system"] == [{"text": "sys"}]
    assert request["messages"][-1] == {"role": "user", "content": [{"text": "again"}]}
    assert "inferenceConfig" not in request


def test_stream_is_lazy_and_closes_on_abandon():
    events = FakeEventStream([_delta("a"), _delta("b")])
    bedrock = FakeBedrock(events)

    stream = BedrockConverseClient(ChatLLMConfig(), client=bedrock).stream("sys", (), "hi")
    assert bedrock.requests == []

    assert next(stream) == "a"
    stream.close()
    assert events.closed


def test_stream_error_event_raises_gateway_error():
    events = FakeEventStream([_delta("a"), {"throttlingException": {"message": "slow down"}}])
    stream = BedrockConverseClient(ChatLLMConfig(), client=FakeBedrock(events)).stream("sys", (), "hi")

    assert next(stream) == "a"
    with pytest.raises(GatewayError, match="slow down"):
        next(stream)


def test_stream_client_errors_become_gateway_errors():
    failing_call = FakeBedrock(error=_client_error("AccessDeniedException", 403))
    with pytest.raises(GatewayError) as excinfo:
        list(BedrockConverseClient(ChatLLMConfig(), client=failing_call).stream("sys", (), "hi"))
    assert excinfo.value.status_code == 403

    events = FakeEventStream([_delta("a")], error=_client_error("ModelStreamErrorException", 424))
    stream = BedrockConverseClient(ChatLLMConfig(), client=FakeBedrock(events)).stream("sys", (), "hi")
    assert next(stream) == "a"
    with pytest.raises(GatewayError):
        next(stream)
    assert events.closed


def test_service_defaults_to_bedrock_without_endpoint():
    assert isinstance(ChatService(ChatConfig()).gateway, BedrockConverseClient)


def test_service_uses_chat_completions_client_for_custom_endpoint():
    config = ChatConfig(llm=ChatLLMConfig(endpoint="http://localhost:8000/v1/chat/completions"))
    assert isinstance(ChatService(config).gateway, ChatLLMClient)
