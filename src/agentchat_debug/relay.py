"""HTTP client for the agent runtime.

The relay reshapes a chat turn into the runtime's request format and records
every exchange as an ApiCall for the debug panel. It never interprets a
streamed reply: bytes are handed back to the caller as they arrive.
"""

import json
import logging
import uuid
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional
from urllib.parse import quote

import httpx

from . import __version__
from .config import get_api_base_url, get_app_name, get_debug_history_size, get_timeout
from .core import ApiCall, ApiRequest, ApiResponse, ConnectionStatus, now_ms
from .frames import extract_bot_message

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "*/*",
    "Content-Type": "application/json",
    "User-Agent": f"agentchat-debug/{__version__}",
}


@dataclass
class RelayResult:
    """Outcome of one non-streaming call to the runtime."""

    ok: bool
    status: int
    api_call: ApiCall
    body: str = ""
    data: Any = None  # parsed JSON body, if it was JSON
    error: Optional[str] = None

    @property
    def bot_message(self) -> str:
        return extract_bot_message(self.body)


class RelayStream:
    """An open streamed reply. Iterate ``iter_bytes`` to relay it."""

    def __init__(self, response: httpx.Response, api_call: ApiCall):
        self.response = response
        self.api_call = api_call
        self._received: list[bytes] = []

    @property
    def status_code(self) -> int:
        return self.response.status_code

    @property
    def ok(self) -> bool:
        return self.response.is_success

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self.response.aiter_bytes():
            self._received.append(chunk)
            yield chunk

    async def read_text(self) -> str:
        body = await self.response.aread()
        self._received = [body]
        return body.decode("utf-8", errors="replace")

    def received_text(self) -> str:
        return b"".join(self._received).decode("utf-8", errors="replace")


class RelayClient:
    """Forwards console requests to the agent runtime."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        app_name: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        history_size: Optional[int] = None,
    ):
        self.base_url = (base_url or get_api_base_url()).rstrip("/")
        self.app_name = app_name or get_app_name()
        self.timeout = timeout if timeout is not None else get_timeout()
        self.transport = transport
        self.history: deque[ApiCall] = deque(maxlen=history_size or get_debug_history_size())

    # ── Endpoints ────────────────────────────────────────────────────

    def session_url(self, user_id: str, session_id: str, app_name: Optional[str] = None) -> str:
        return (
            f"{self.base_url}/apps/{quote(app_name or self.app_name, safe='')}"
            f"/users/{quote(user_id, safe='')}/sessions/{quote(session_id, safe='')}"
        )

    async def create_session(
        self,
        user_id: str,
        session_id: str,
        state: Optional[dict] = None,
        *,
        app_name: Optional[str] = None,
        token: Optional[str] = None,
    ) -> RelayResult:
        """Create (or reset) a session on the runtime with an initial state."""
        url = self.session_url(user_id, session_id, app_name)
        return await self._request("POST", url, state or {}, token)

    async def get_session(
        self,
        user_id: str,
        session_id: str,
        *,
        app_name: Optional[str] = None,
        token: Optional[str] = None,
    ) -> RelayResult:
        """Fetch the runtime's view of a session, including its state."""
        url = self.session_url(user_id, session_id, app_name)
        return await self._request("GET", url, None, token)

    async def run(
        self,
        message: str,
        user_id: str,
        session_id: str,
        *,
        app_name: Optional[str] = None,
        state: Optional[dict] = None,
        token: Optional[str] = None,
    ) -> RelayResult:
        """Send one user turn and wait for the complete reply."""
        body = self.run_body(message, user_id, session_id, app_name=app_name, state=state)
        return await self._request("POST", f"{self.base_url}/run", body, token)

    @asynccontextmanager
    async def stream(
        self,
        message: str,
        user_id: str,
        session_id: str,
        *,
        app_name: Optional[str] = None,
        state: Optional[dict] = None,
        token: Optional[str] = None,
    ) -> AsyncIterator[RelayStream]:
        """Send one user turn and open the streamed reply.

        Transport errors propagate to the caller; the ApiCall records them.
        """
        url = f"{self.base_url}/run_sse"
        body = self.run_body(message, user_id, session_id, app_name=app_name, state=state)
        body["streaming"] = True
        body_text = json.dumps(body)
        headers = self._headers(token)

        start = now_ms()
        call = ApiCall(id=_call_id(), request=ApiRequest("POST", url, headers, body_text, start))
        self._record(call)

        handle = None
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                async with client.stream("POST", url, headers=headers, content=body_text) as resp:
                    call.response = ApiResponse(
                        status=resp.status_code,
                        status_text=resp.reason_phrase,
                        headers=dict(resp.headers),
                    )
                    handle = RelayStream(resp, call)
                    yield handle
        except httpx.HTTPError as e:
            call.error = str(e) or type(e).__name__
            logger.error("Streamed POST %s failed: %s", url, call.error)
            raise
        finally:
            call.duration = now_ms() - start
            if handle is not None and call.response is not None:
                call.response.body = handle.received_text()
                call.response.timestamp = now_ms()

    async def ping(self) -> ConnectionStatus:
        """Check that the runtime answers at all."""
        try:
            async with httpx.AsyncClient(timeout=min(self.timeout, 5.0), transport=self.transport) as client:
                resp = await client.get(f"{self.base_url}/list-apps", headers=self._headers(None))
        except httpx.HTTPError as e:
            return ConnectionStatus(is_connected=False, last_ping=now_ms(), error=str(e) or type(e).__name__)

        if resp.status_code >= 500:
            return ConnectionStatus(
                is_connected=False,
                last_ping=now_ms(),
                error=f"HTTP {resp.status_code}: {resp.reason_phrase}",
            )
        return ConnectionStatus(is_connected=True, last_ping=now_ms())

    def recent_calls(self, limit: Optional[int] = None) -> list[ApiCall]:
        """Return recorded calls, newest first."""
        calls = list(reversed(self.history))
        return calls[:limit] if limit is not None else calls

    # ── Helpers ──────────────────────────────────────────────────────

    def run_body(
        self,
        message: str,
        user_id: str,
        session_id: str,
        *,
        app_name: Optional[str] = None,
        state: Optional[dict] = None,
    ) -> dict:
        body = {
            "appName": app_name or self.app_name,
            "userId": user_id,
            "sessionId": session_id,
            "newMessage": {"role": "user", "parts": [{"text": message}]},
        }
        if state:
            body["stateDelta"] = state
        return body

    def _headers(self, token: Optional[str]) -> dict:
        headers = dict(DEFAULT_HEADERS)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _record(self, call: ApiCall) -> None:
        self.history.append(call)

    async def _request(self, method: str, url: str, body: Optional[dict], token: Optional[str]) -> RelayResult:
        headers = self._headers(token)
        body_text = json.dumps(body) if body is not None else None
        start = now_ms()
        request = ApiRequest(method, url, headers, body_text, start)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.request(method, url, headers=headers, content=body_text)
        except httpx.HTTPError as e:
            error = str(e) or type(e).__name__
            logger.error("%s %s failed: %s", method, url, error)
            call = ApiCall(id=_call_id(), request=request, error=error, duration=0)
            self._record(call)
            return RelayResult(ok=False, status=502, api_call=call, error=error)

        text = resp.text
        call = ApiCall(
            id=_call_id(),
            request=request,
            response=ApiResponse(
                status=resp.status_code,
                status_text=resp.reason_phrase,
                headers=dict(resp.headers),
                body=text,
            ),
            duration=now_ms() - start,
        )
        self._record(call)

        error = None
        if not resp.is_success:
            error = f"HTTP {resp.status_code}: {resp.reason_phrase}"
            logger.warning("%s %s returned %s", method, url, error)

        return RelayResult(
            ok=resp.is_success,
            status=resp.status_code,
            api_call=call,
            body=text,
            data=_parse_json(text),
            error=error,
        )


def _call_id() -> str:
    return uuid.uuid4().hex[:13]


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None
