"""Inbound frame decoding.

Replies from the agent runtime arrive in one of three shapes:

- line-delimited event frames on a chunked transport, each line optionally
  prefixed with ``data: ``::

      {"type":"chunk","id":"m1","content":"Hel"}
      {"type":"complete","id":"m1"}
      {"type":"options","id":"m1","options":["Yes","No"]}

- a single JSON object describing one message, or
- a JSON array of agent events (``{id, author, content: {role, parts}, ...}``).

All three are decoded here into the closed set of frame types below, so the
transcript reducer never has to look at raw payloads.
"""

import codecs
import json
import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union

from .core import Part

logger = logging.getLogger(__name__)

# Event fields carried through to Message.metadata for display.
METADATA_KEYS = ("author", "invocationId", "actions", "usageMetadata", "customMetadata")

# Latest instant datetime can render (9999-12-31T23:59:59.999Z), in ms.
MAX_TIMESTAMP_MS = 253402300799999


@dataclass(frozen=True)
class ChunkFrame:
    """Append ``text`` to message ``id``."""

    id: str
    text: str = ""


@dataclass(frozen=True)
class CompleteFrame:
    """No more chunks will follow for message ``id``."""

    id: str


@dataclass(frozen=True)
class OptionsFrame:
    """Attach selectable reply strings to message ``id``."""

    id: str
    options: tuple[str, ...] = ()


@dataclass(frozen=True)
class FullMessageFrame:
    """A complete message, upserted by id."""

    id: str
    role: str = "assistant"
    content: str = ""
    parts: tuple[Part, ...] = ()
    metadata: dict = field(default_factory=dict)
    timestamp: Optional[int] = None  # ms; None keeps the existing timestamp
    streaming: bool = False
    options: Optional[tuple[str, ...]] = None


Frame = Union[ChunkFrame, CompleteFrame, OptionsFrame, FullMessageFrame]


def new_message_id() -> str:
    return uuid.uuid4().hex


def decode_line(line: str) -> Optional[Frame]:
    """Decode one line of a streamed reply.

    Returns None for blank lines, SSE comments, undecodable JSON, unknown
    frame types and frames without an id.
    """
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if line.startswith("data:"):
        line = line[5:].lstrip()

    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Skipping undecodable frame: %r", line[:200])
        return None

    if not isinstance(data, dict):
        return None
    try:
        return _frame_from_dict(data)
    except (TypeError, ValueError, OverflowError) as e:
        logger.debug("Skipping malformed frame %r: %s", line[:200], e)
        return None


def _frame_from_dict(data: dict) -> Optional[Frame]:
    frame_type = data.get("type")
    if frame_type is None:
        # The runtime's own event objects carry no "type" tag
        if "content" in data or "parts" in data:
            return event_to_frame(data)
        return None

    if frame_type in ("message", "full-message", "full_message"):
        return event_to_frame(data)

    msg_id = data.get("id")
    if msg_id is None or msg_id == "":
        logger.debug("Skipping %s frame without id", frame_type)
        return None
    msg_id = str(msg_id)

    if frame_type == "chunk":
        content = data.get("content")
        return ChunkFrame(id=msg_id, text=content if isinstance(content, str) else "")
    if frame_type == "complete":
        return CompleteFrame(id=msg_id)
    if frame_type == "options":
        options = data.get("options")
        if not isinstance(options, list):
            return None
        return OptionsFrame(id=msg_id, options=tuple(str(o) for o in options))

    return None


def decode_lines(lines: Iterable[str]) -> list[Frame]:
    """Decode every line in ``lines``, dropping the ones that carry no frame."""
    frames = []
    for line in lines:
        frame = decode_line(line)
        if frame is not None:
            frames.append(frame)
    return frames


class FrameDecoder:
    """Incremental decoder for a chunked, line-delimited frame stream.

    Bytes are fed as they arrive from the transport. Complete lines are
    decoded immediately; a partial trailing line is kept until the next
    ``feed`` or until ``flush`` at end of stream.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """The buffered partial line."""
        return self._buffer

    def feed(self, data: Union[bytes, str]) -> list[Frame]:
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data
        *lines, self._buffer = self._buffer.split("\n")
        return decode_lines(lines)

    def flush(self) -> list[Frame]:
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return decode_lines([tail])


# ── Non-streaming replies ────────────────────────────────────────


def event_to_frame(event: dict) -> FullMessageFrame:
    """Convert one agent event (or message-shaped object) into a FullMessageFrame."""
    raw_parts: list = []
    text: Optional[str] = None
    role = "assistant"

    content = event.get("content")
    if isinstance(content, dict):
        if isinstance(content.get("parts"), list):
            raw_parts = content["parts"]
        if content.get("role") == "user":
            role = "user"
    elif isinstance(content, str):
        text = content
    if not raw_parts and isinstance(event.get("parts"), list):
        raw_parts = event["parts"]
    if event.get("role") == "user":
        role = "user"

    parts = tuple(p for p in (Part.from_dict(d) for d in raw_parts) if p is not None)

    if text is None:
        texts = [p.text for p in parts if p.text is not None]
        if texts:
            text = "".join(texts)
        else:
            for key in ("message", "response"):
                if isinstance(event.get(key), str):
                    text = event[key]
                    break
    if text is None:
        text = ""
    if not parts and text:
        parts = (Part(text=text),)

    options = event.get("options")
    msg_id = event.get("id")

    return FullMessageFrame(
        id=str(msg_id) if msg_id else new_message_id(),
        role=role,
        content=text,
        parts=parts,
        metadata={k: event[k] for k in METADATA_KEYS if k in event},
        timestamp=_timestamp_ms(event.get("timestamp")),
        streaming=bool(event.get("partial", False)),
        options=tuple(str(o) for o in options) if isinstance(options, list) else None,
    )


def decode_reply(body: Any) -> list[FullMessageFrame]:
    """Decode a non-streaming reply body into full-message frames.

    ``body`` is the raw response text or an already parsed JSON value. Text
    that is not JSON becomes a single assistant message.
    """
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            if not body.strip():
                return []
            return [FullMessageFrame(id=new_message_id(), content=body, parts=(Part(text=body),))]
    else:
        data = body

    if isinstance(data, list):
        return [f for f in (_safe_event_frame(e) for e in data if isinstance(e, dict)) if f is not None]
    if isinstance(data, dict):
        frame = _safe_event_frame(data)
        return [frame] if frame is not None else []
    if data is None:
        return []
    text = str(data)
    return [FullMessageFrame(id=new_message_id(), content=text, parts=(Part(text=text),))]


def _safe_event_frame(event: dict) -> Optional[FullMessageFrame]:
    try:
        return event_to_frame(event)
    except (TypeError, ValueError, OverflowError) as e:
        logger.debug("Skipping malformed event %r: %s", event.get("id"), e)
        return None


def extract_bot_message(body: str) -> str:
    """Return the reply text the console shows for a raw response body."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return body
    if isinstance(data, dict):
        return data.get("message") or data.get("response") or body
    return body


def _timestamp_ms(value: Any) -> Optional[int]:
    """Normalize an event timestamp to ms. The runtime sends float seconds."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    ms = int(value * 1000) if value < 1e11 else int(value)
    return ms if ms <= MAX_TIMESTAMP_MS else None
