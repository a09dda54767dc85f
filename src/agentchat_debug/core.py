"""Core data models for agentchat-debug."""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Optional


def now_ms() -> int:
    """Return the current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class FunctionCall:
    id: str
    name: str
    args: dict = field(default_factory=dict)


@dataclass(frozen=True)
class FunctionResponse:
    id: str
    name: str
    response: Any = None


@dataclass(frozen=True)
class Part:
    """One fragment of a message: text, a function call or a function result."""

    text: Optional[str] = None
    function_call: Optional[FunctionCall] = None
    function_response: Optional[FunctionResponse] = None

    @property
    def kind(self) -> str:
        if self.function_call is not None:
            return "function_call"
        if self.function_response is not None:
            return "function_response"
        return "text"

    def to_dict(self) -> dict:
        if self.function_call is not None:
            fc = self.function_call
            return {"functionCall": {"id": fc.id, "name": fc.name, "args": fc.args}}
        if self.function_response is not None:
            fr = self.function_response
            return {"functionResponse": {"id": fr.id, "name": fr.name, "response": fr.response}}
        return {"text": self.text or ""}

    @classmethod
    def from_dict(cls, data: dict) -> Optional["Part"]:
        """Build a Part from the agent-runtime wire shape. Unknown shapes return None."""
        if not isinstance(data, dict):
            return None
        fc = data.get("functionCall") or data.get("function_call")
        if isinstance(fc, dict):
            return cls(function_call=FunctionCall(
                id=str(fc.get("id") or ""),
                name=str(fc.get("name") or ""),
                args=fc.get("args") if isinstance(fc.get("args"), dict) else {},
            ))
        fr = data.get("functionResponse") or data.get("function_response")
        if isinstance(fr, dict):
            return cls(function_response=FunctionResponse(
                id=str(fr.get("id") or ""),
                name=str(fr.get("name") or ""),
                response=fr.get("response"),
            ))
        text = data.get("text")
        if isinstance(text, str):
            return cls(text=text)
        return None


@dataclass(frozen=True)
class Message:
    """A single turn in a conversation transcript."""

    id: str
    role: str  # "user" | "assistant"
    content: str = ""
    timestamp: int = field(default_factory=now_ms)  # ms since epoch
    streaming: bool = False
    parts: tuple[Part, ...] = ()
    options: Optional[tuple[str, ...]] = None
    metadata: dict = field(default_factory=dict)  # author, invocationId, actions, usageMetadata

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
            "streaming": self.streaming,
            "parts": [p.to_dict() for p in self.parts],
            "options": list(self.options) if self.options is not None else None,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Message":
        parts = tuple(p for p in (Part.from_dict(d) for d in data.get("parts") or []) if p)
        options = data.get("options")
        return cls(
            id=str(data["id"]),
            role=data.get("role", "assistant"),
            content=data.get("content") or "",
            timestamp=int(data.get("timestamp") or now_ms()),
            streaming=bool(data.get("streaming", False)),
            parts=parts,
            options=tuple(options) if isinstance(options, list) else None,
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class SessionConfig:
    """Parameters used to create a session against the agent runtime."""

    user_id: str
    session_id: str
    app_name: str
    state: str = "{}"  # JSON text, edited by hand in the console

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "sessionId": self.session_id,
            "appName": self.app_name,
            "state": self.state,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionConfig":
        state = data.get("state", "{}")
        if not isinstance(state, str):
            state = json.dumps(state)
        return cls(
            user_id=data.get("userId", ""),
            session_id=data.get("sessionId", ""),
            app_name=data.get("appName", ""),
            state=state,
        )


@dataclass
class ApiRequest:
    method: str
    url: str
    headers: dict = field(default_factory=dict)
    body: Optional[str] = None
    timestamp: int = field(default_factory=now_ms)


@dataclass
class ApiResponse:
    status: int
    status_text: str
    headers: dict = field(default_factory=dict)
    body: str = ""
    timestamp: int = field(default_factory=now_ms)


@dataclass
class ApiCall:
    """One request/response exchange with the agent runtime, kept for the debug panel."""

    id: str
    request: ApiRequest
    response: Optional[ApiResponse] = None
    error: Optional[str] = None
    duration: int = 0  # ms

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "request": {
                "method": self.request.method,
                "url": self.request.url,
                "headers": self.request.headers,
                "body": self.request.body,
                "timestamp": self.request.timestamp,
            },
            "duration": self.duration,
        }
        if self.response is not None:
            data["response"] = {
                "status": self.response.status,
                "statusText": self.response.status_text,
                "headers": self.response.headers,
                "body": self.response.body,
                "timestamp": self.response.timestamp,
            }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ConnectionStatus:
    is_connected: bool
    last_ping: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"isConnected": self.is_connected, "lastPing": self.last_ping, "error": self.error}
