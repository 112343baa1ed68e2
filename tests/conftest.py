import json
import pytest
import httpx
from fastapi.testclient import TestClient

from nimproxy.api import create_app
from nimproxy.config import Settings

# Mock backend payloads
MOCK_NIM_COMPLETION = {
    "id": "cmpl-nim-123",
    "object": "chat.completion",
    "created": 1677652288,
    "model": "qwen/qwen3-coder-480b-a35b-instruct",
    "choices": [
        {
            "index": 0,
            "message": {
                "role": "assistant",
                "content": "Hello there, how may I assist you today?",
                "reasoning_content": "The user greeted me.",
            },
            "finish_reason": "stop",
        }
    ],
    "usage": {"prompt_tokens": 9, "completion_tokens": 12, "total_tokens": 21},
}

MOCK_NIM_COMPLETION_TWO_CHOICES = {
    "id": "cmpl-nim-456",
    "object": "chat.completion",
    "created": 1677652288,
    "model": "meta/llama-3.1-8b-instruct",
    "choices": [
        {
            "index": 0,
            "message": {"role": "assistant", "content": "First answer"},
            "finish_reason": "stop",
        },
        {
            "index": 1,
            "message": {"role": "assistant", "content": "Second answer"},
            "finish_reason": "length",
        },
    ],
}

MOCK_STREAM_EVENTS = [
    {
        "id": "chatcmpl-123",
        "object": "chat.completion.chunk",
        "created": 1694268190,
        "model": "deepseek-ai/deepseek-v3.2",
        "choices": [
            {"index": 0, "delta": {"role": "assistant", "reasoning_content": "Let me think"}, "finish_reason": None}
        ],
    },
    {
        "id": "chatcmpl-123",
        "object": "chat.completion.chunk",
        "created": 1694268190,
        "model": "deepseek-ai/deepseek-v3.2",
        "choices": [
            {"index": 0, "delta": {"content": "Hello", "reasoning_content": None}, "finish_reason": None}
        ],
    },
    {
        "id": "chatcmpl-123",
        "object": "chat.completion.chunk",
        "created": 1694268190,
        "model": "deepseek-ai/deepseek-v3.2",
        "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}],
    },
]


def sse(*events):
    """Encode events as a backend SSE body ending with the [DONE] sentinel."""
    body = "".join(f"data: {json.dumps(event, ensure_ascii=False)}\n\n" for event in events)
    return (body + "data: [DONE]\n\n").encode()


def parse_events(text):
    """Split a relayed SSE body into its data payloads."""
    return [
        line[len("data: "):]
        for line in text.split("\n\n")
        if line.startswith("data: ")
    ]


class MockBackend:
    """
    httpx.MockTransport handler standing in for the NIM API.

    Probe calls (no "stream" field) answer with probe_status; chat calls answer
    with the configured completion, stream chunks or error.
    """

    def __init__(
        self,
        completion=None,
        stream_chunks=None,
        probe_status=404,
        status_code=200,
        error_body=None,
        stream_error=None,
    ):
        self.completion = completion if completion is not None else MOCK_NIM_COMPLETION
        self.stream_chunks = stream_chunks
        self.probe_status = probe_status
        self.status_code = status_code
        self.error_body = error_body
        self.stream_error = stream_error
        self.requests = []

    @property
    def probes(self):
        return [r for r in self.requests if "stream" not in r["json"]]

    @property
    def calls(self):
        return [r for r in self.requests if "stream" in r["json"]]

    def __call__(self, request):
        body = json.loads(request.content)
        self.requests.append(
            {"url": str(request.url), "headers": dict(request.headers), "json": body}
        )

        if "stream" not in body:
            return httpx.Response(
                self.probe_status,
                json={"error": {"message": "probe"}} if self.probe_status >= 400 else MOCK_NIM_COMPLETION,
            )

        if self.status_code >= 400:
            return httpx.Response(self.status_code, json=self.error_body or {})

        if body["stream"]:
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream; charset=utf-8"},
                content=self._chunks(),
            )
        return httpx.Response(200, json=self.completion)

    async def _chunks(self):
        chunks = self.stream_chunks
        if chunks is None:
            chunks = [sse(*MOCK_STREAM_EVENTS)]
        for chunk in chunks:
            yield chunk
        if self.stream_error is not None:
            raise self.stream_error


@pytest.fixture
def settings():
    """Settings with an API key and both toggles off"""
    return Settings(api_base="http://nim.example.com/v1", api_key="nim-test-key")


@pytest.fixture
def make_client(settings):
    """Build a TestClient whose backend calls go to a MockBackend"""

    def _make_client(backend=None, **overrides):
        backend = backend if backend is not None else MockBackend()
        app_settings = settings.model_copy(update=overrides) if overrides else settings
        app = create_app(app_settings, transport=httpx.MockTransport(backend))
        return TestClient(app), backend

    return _make_client


@pytest.fixture
def test_client(make_client):
    client, _ = make_client()
    return client
