"""Shared test fixtures for agentchat-debug."""

import json

import httpx
import pytest

from agentchat_debug.relay import RelayClient
from agentchat_debug.sessions import SessionRegistry
from agentchat_debug.storage import MemoryStore


def frame_line(**frame) -> str:
    return f"data: {json.dumps(frame)}\n"


@pytest.fixture
def stream_lines():
    """A streamed reply: two chunks, options, completion, plus noise the decoder must skip."""
    return [
        frame_line(type="chunk", id="m1", content="Hello"),
        ": keep-alive\n",
        frame_line(type="chunk", id="m1", content=", how can I help?"),
        "data: {not json\n",
        frame_line(type="heartbeat", id="m1"),
        frame_line(type="options", id="m1", options=["Book a visit", "Ask a question"]),
        frame_line(type="complete", id="m1"),
    ]


@pytest.fixture
def agent_events():
    """A non-streaming /run reply: the runtime's list of agent events."""
    return [
        {
            "id": "evt-001",
            "invocationId": "e-42",
            "author": "router_agent",
            "timestamp": 1736935200.5,
            "content": {
                "role": "model",
                "parts": [{"functionCall": {"id": "fc-1", "name": "get_weather", "args": {"city": "Oslo"}}}],
            },
            "actions": {"stateDelta": {}},
        },
        {
            "id": "evt-002",
            "invocationId": "e-42",
            "author": "router_agent",
            "timestamp": 1736935201.0,
            "content": {
                "role": "user",
                "parts": [{"functionResponse": {"id": "fc-1", "name": "get_weather", "response": {"result": "sunny"}}}],
            },
        },
        {
            "id": "evt-003",
            "invocationId": "e-42",
            "author": "weather_agent",
            "timestamp": 1736935202.0,
            "content": {"role": "model", "parts": [{"text": "It is sunny "}, {"text": "in Oslo."}]},
            "actions": {"stateDelta": {"last_city": "Oslo"}},
            "usageMetadata": {"promptTokenCount": 120, "candidatesTokenCount": 9, "totalTokenCount": 129},
        },
    ]


class FakeRuntime:
    """In-process stand-in for the agent runtime API."""

    def __init__(self, stream_chunks, run_reply):
        self.stream_chunks = stream_chunks
        self.run_reply = run_reply
        self.requests: list[httpx.Request] = []
        self.fail_with: httpx.HTTPError | None = None
        self.status = 200
        self.break_stream_after: int | None = None
        self.sessions: dict = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        path = request.url.path

        if path == "/list-apps":
            return httpx.Response(200, json=["multi_tool_agent"])
        if self.status != 200:
            return httpx.Response(self.status, json={"detail": "runtime error"})
        if path == "/run":
            return httpx.Response(200, json=self.run_reply)
        if path == "/run_sse":
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=self._stream(),
            )
        if path.startswith("/apps/"):
            if request.method == "POST":
                state = json.loads(request.content or b"{}")
                self.sessions[path] = state
                return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1], "state": state, "events": []})
            if path in self.sessions:
                return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1], "state": self.sessions[path]})
            return httpx.Response(404, json={"detail": "Session not found"})
        return httpx.Response(404)

    async def _stream(self):
        for i, chunk in enumerate(self.stream_chunks):
            if self.break_stream_after is not None and i >= self.break_stream_after:
                raise httpx.ReadError("connection reset by peer")
            yield chunk


def split_bytes(lines: list[str], size: int = 7) -> list[bytes]:
    """Re-chunk a stream at arbitrary byte boundaries, as a real transport would."""
    data = "".join(lines).encode("utf-8")
    return [data[i:i + size] for i in range(0, len(data), size)]


@pytest.fixture
def runtime(stream_lines, agent_events):
    return FakeRuntime(split_bytes(stream_lines), agent_events)


@pytest.fixture
def relay(runtime):
    return RelayClient(
        base_url="http://agent.test",
        app_name="multi_tool_agent",
        timeout=5.0,
        transport=httpx.MockTransport(runtime.handler),
    )


@pytest.fixture
def registry():
    return SessionRegistry(MemoryStore())
