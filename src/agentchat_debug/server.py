"""FastAPI web server for agentchat-debug."""

import json
import logging
import uuid
from pathlib import Path
from typing import Optional, Union

import httpx
from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.responses import HTMLResponse, JSONResponse, Response, StreamingResponse
from pydantic import BaseModel

from . import __version__
from .config import get_app_name, get_data_path
from .core import SessionConfig
from .export import config_to_json, transcript_to_json, transcript_to_markdown
from .frames import decode_reply
from .relay import RelayClient
from .sessions import SessionRegistry
from .storage import JsonFileStore
from .stream import StreamFolder
from .transcript import append_user_turn, fold

logger = logging.getLogger(__name__)

app = FastAPI(title="agentchat-debug", version=__version__)

# Populated on first request
_relay: RelayClient | None = None
_registry: SessionRegistry | None = None


def _get_relay() -> RelayClient:
    global _relay
    if _relay is None:
        _relay = RelayClient()
        logger.info("Relaying to %s (app %s)", _relay.base_url, _relay.app_name)
    return _relay


def _get_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        data_path = get_data_path()
        _registry = SessionRegistry(JsonFileStore(data_path))
        logger.info("Saving transcripts under %s", data_path)
    return _registry


class SessionRequest(BaseModel):
    userId: str = ""
    sessionId: str = ""
    appName: Optional[str] = None
    state: Union[str, dict, None] = None


class ChatRequest(BaseModel):
    userId: str = ""
    sessionId: str = ""
    message: str = ""
    appName: Optional[str] = None
    stream: bool = False
    state: Optional[dict] = None


def _bearer(authorization: str | None) -> str | None:
    if not authorization:
        return None
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return authorization.strip() or None


def _parse_state(state: Union[str, dict, None]) -> dict:
    """Parse the hand-edited state JSON. Raises HTTPException on bad input."""
    if state is None or state == "":
        return {}
    if isinstance(state, dict):
        return state
    try:
        parsed = json.loads(state)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON in initial state")
    if not isinstance(parsed, dict):
        raise HTTPException(status_code=400, detail="Initial state must be a JSON object")
    return parsed


def _error_frame(error: str, **extra) -> bytes:
    """A terminal stream frame distinct from ``complete``.

    Starts with a newline so a partial line left by a broken upstream
    cannot swallow it.
    """
    return f"\ndata: {json.dumps({'type': 'error', 'error': error, **extra})}\n\n".encode("utf-8")


def _default_config() -> SessionConfig:
    return SessionConfig(
        user_id="u_123",
        session_id=uuid.uuid4().hex,
        app_name=get_app_name(),
        state="{}",
    )


# ── Routes ───────────────────────────────────────────────────────


@app.get("/")
async def index():
    """Serve the console page."""
    html_path = Path(__file__).parent / "static" / "index.html"
    if not html_path.exists():
        raise HTTPException(status_code=404, detail="Frontend not found")
    return HTMLResponse(html_path.read_text(encoding="utf-8"))


@app.get("/api/config")
async def get_config():
    """Return the saved session config, or a fresh default."""
    store = _get_registry().store
    try:
        config = store.load_config()
    except OSError as e:
        logger.warning("Failed to load session config: %s", e)
        config = None
    return (config or _default_config()).to_dict()


@app.get("/api/config/export")
async def export_config():
    store = _get_registry().store
    try:
        config = store.load_config()
    except OSError as e:
        logger.warning("Failed to load session config: %s", e)
        config = None
    return Response(
        content=config_to_json(config or _default_config()),
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="session-config.json"'},
    )


@app.post("/api/config")
async def save_config(req: SessionRequest):
    """Remember the session config for the next visit."""
    state = _parse_state(req.state)
    config = SessionConfig(
        user_id=req.userId.strip(),
        session_id=req.sessionId.strip(),
        app_name=req.appName or get_app_name(),
        state=json.dumps(state),
    )
    try:
        _get_registry().store.save_config(config)
    except OSError as e:
        logger.warning("Failed to save session config: %s", e)
        raise HTTPException(status_code=500, detail="Failed to save config")
    return config.to_dict()


@app.post("/api/session")
async def create_session(req: SessionRequest, authorization: str | None = Header(None)):
    """Create a session on the agent runtime."""
    if not req.userId.strip() or not req.sessionId.strip() or req.state is None:
        raise HTTPException(status_code=400, detail="Missing required fields: userId, sessionId, or state")
    state = _parse_state(req.state)
    user_id, session_id = req.userId.strip(), req.sessionId.strip()

    relay = _get_relay()
    result = await relay.create_session(
        user_id, session_id, state, app_name=req.appName, token=_bearer(authorization)
    )

    config = SessionConfig(user_id, session_id, req.appName or relay.app_name, json.dumps(state))
    try:
        _get_registry().store.save_config(config)
    except OSError as e:
        logger.warning("Failed to save session config: %s", e)

    if not result.ok:
        return JSONResponse(
            {"success": False, "error": result.error, "apiCall": result.api_call.to_dict()},
            status_code=result.status,
        )
    return {"success": True, "data": result.data if result.data is not None else result.body,
            "apiCall": result.api_call.to_dict()}


@app.post("/api/chat")
async def chat(req: ChatRequest, authorization: str | None = Header(None)):
    """Send one user turn to the runtime.

    With ``stream`` the runtime's chunked reply is relayed unmodified while
    being folded into the server-side transcript.
    """
    if not req.userId.strip() or not req.sessionId.strip() or not req.message.strip():
        raise HTTPException(status_code=400, detail="Missing required fields: userId, sessionId, or message")

    key = (req.userId.strip(), req.sessionId.strip())
    message = req.message.strip()
    token = _bearer(authorization)

    if req.stream:
        return StreamingResponse(
            _relay_stream(key, message, req.appName, req.state, token),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    relay = _get_relay()
    registry = _get_registry()
    async with registry.lock(key):
        transcript = append_user_turn(registry.get(key), message)
        registry.put(key, transcript)

        result = await relay.run(
            message, key[0], key[1], app_name=req.appName, state=req.state, token=token
        )
        if not result.ok:
            return JSONResponse(
                {"success": False, "error": result.error, "apiCall": result.api_call.to_dict()},
                status_code=result.status,
            )

        transcript = fold(decode_reply(result.data if result.data is not None else result.body), transcript)
        registry.put(key, transcript)

    return {
        "success": True,
        "data": result.body,
        "botMessage": result.bot_message,
        "messages": transcript.to_dicts(),
        "apiCall": result.api_call.to_dict(),
    }


async def _relay_stream(key, message: str, app_name: str | None, state: dict | None, token: str | None):
    relay = _get_relay()
    registry = _get_registry()

    async with registry.lock(key):
        folder = StreamFolder(append_user_turn(registry.get(key), message))
        registry.put(key, folder.transcript)
        try:
            async with relay.stream(
                message, key[0], key[1], app_name=app_name, state=state, token=token
            ) as upstream:
                if not upstream.ok:
                    detail = await upstream.read_text()
                    yield _error_frame(
                        f"HTTP {upstream.status_code}: {upstream.response.reason_phrase}",
                        status=upstream.status_code,
                        body=detail,
                    )
                    return

                async for chunk in upstream.iter_bytes():
                    yield chunk
                    if folder.feed(chunk):
                        registry.put(key, folder.transcript, persist=False)
                folder.finish()
        except httpx.HTTPError as e:
            # Messages still streaming stay that way; the error frame tells the caller why.
            yield _error_frame(str(e) or type(e).__name__, incomplete=folder.transcript.streaming_ids())
        finally:
            registry.put(key, folder.transcript)


@app.get("/api/transcript/{user_id}/{session_id}")
async def get_transcript(user_id: str, session_id: str):
    """Return the server-side transcript for a session."""
    transcript = _get_registry().get((user_id, session_id))
    return {
        "userId": user_id,
        "sessionId": session_id,
        "messages": transcript.to_dicts(),
        "streaming": transcript.streaming_ids(),
    }


@app.delete("/api/transcript/{user_id}/{session_id}")
async def clear_transcript(user_id: str, session_id: str):
    """Discard every message of a session."""
    key = (user_id, session_id)
    registry = _get_registry()
    async with registry.lock(key):
        registry.clear(key)
    return {"success": True}


@app.get("/api/export/{user_id}/{session_id}")
async def export_transcript(
    user_id: str,
    session_id: str,
    format: str = Query("json", description="Export format: json or md"),
):
    """Export a transcript as JSON or Markdown."""
    transcript = _get_registry().get((user_id, session_id))
    safe_name = "".join(c if c.isalnum() or c in "-_" else "" for c in f"{user_id}-{session_id}")[:80]

    if format == "md":
        return Response(
            content=transcript_to_markdown(user_id, session_id, transcript),
            media_type="text/markdown",
            headers={"Content-Disposition": f'attachment; filename="chat-history-{safe_name}.md"'},
        )
    return Response(
        content=transcript_to_json(user_id, session_id, transcript),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="chat-history-{safe_name}.json"'},
    )


@app.get("/api/debug/calls")
async def get_api_calls(limit: int = Query(50, ge=1, le=1000)):
    """Return recent request/response exchanges with the runtime, newest first."""
    return [call.to_dict() for call in _get_relay().recent_calls(limit)]


@app.get("/api/status")
async def get_status():
    """Report whether the agent runtime is reachable."""
    status = await _get_relay().ping()
    return status.to_dict()


@app.get("/api/state/{user_id}/{session_id}")
async def get_session_state(
    user_id: str,
    session_id: str,
    app_name: str | None = Query(None, alias="appName"),
    authorization: str | None = Header(None),
):
    """Fetch the runtime's session record, including its state."""
    result = await _get_relay().get_session(
        user_id, session_id, app_name=app_name, token=_bearer(authorization)
    )
    if not result.ok:
        return JSONResponse(
            {"success": False, "error": result.error, "apiCall": result.api_call.to_dict()},
            status_code=result.status,
        )
    return {"success": True, "data": result.data, "apiCall": result.api_call.to_dict()}
