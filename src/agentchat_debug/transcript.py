"""Transcript reconciliation.

A Transcript is an immutable, ordered sequence of Messages indexed by id.
``apply`` folds one inbound frame into a transcript and returns a new one;
the input is never modified, so a caller can keep the previous version
around (for diffing, undo, or rendering) and unit-test the reducer without
any UI.

Invariants:
- at most one Message per id
- order is the order in which ids were first seen
- applying a frame changes exactly one Message
"""

import functools
from dataclasses import replace
from typing import Iterable, Iterator, Optional

from .core import Message, Part, now_ms
from .frames import ChunkFrame, CompleteFrame, Frame, FullMessageFrame, OptionsFrame, new_message_id


class Transcript:
    """Ordered messages of one conversation, with O(1) lookup by id."""

    __slots__ = ("_messages", "_index")

    def __init__(self, messages: Iterable[Message] = ()):
        ordered: list[Message] = []
        index: dict[str, int] = {}
        for msg in messages:
            if msg.id in index:
                ordered[index[msg.id]] = msg
            else:
                index[msg.id] = len(ordered)
                ordered.append(msg)
        self._messages = tuple(ordered)
        self._index = index

    @classmethod
    def _build(cls, messages: tuple, index: dict) -> "Transcript":
        obj = cls.__new__(cls)
        obj._messages = messages
        obj._index = index
        return obj

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __getitem__(self, position: int) -> Message:
        return self._messages[position]

    def __contains__(self, msg_id: object) -> bool:
        return msg_id in self._index

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Transcript):
            return NotImplemented
        return self._messages == other._messages

    def __repr__(self) -> str:
        return f"Transcript({len(self._messages)} messages)"

    def get(self, msg_id: str) -> Optional[Message]:
        position = self._index.get(msg_id)
        return self._messages[position] if position is not None else None

    def ids(self) -> list[str]:
        return [m.id for m in self._messages]

    def streaming_ids(self) -> list[str]:
        """Ids of messages still waiting for a terminal frame."""
        return [m.id for m in self._messages if m.streaming]

    def to_dicts(self) -> list[dict]:
        return [m.to_dict() for m in self._messages]

    @classmethod
    def from_dicts(cls, data: Iterable[dict]) -> "Transcript":
        return cls(Message.from_dict(d) for d in data if isinstance(d, dict) and d.get("id"))

    def _upsert(self, msg: Message) -> "Transcript":
        position = self._index.get(msg.id)
        if position is None:
            index = dict(self._index)
            index[msg.id] = len(self._messages)
            return Transcript._build(self._messages + (msg,), index)
        messages = self._messages[:position] + (msg,) + self._messages[position + 1:]
        return Transcript._build(messages, self._index)


def _append_text(parts: tuple[Part, ...], text: str) -> tuple[Part, ...]:
    if not text:
        return parts
    if parts and parts[-1].kind == "text":
        return parts[:-1] + (Part(text=(parts[-1].text or "") + text),)
    return parts + (Part(text=text),)


def apply(transcript: Transcript, frame: Frame) -> Transcript:
    """Fold one frame into ``transcript`` and return the result."""
    if not isinstance(frame, (ChunkFrame, CompleteFrame, OptionsFrame, FullMessageFrame)):
        raise TypeError(f"not a frame: {frame!r}")
    existing = transcript.get(frame.id)

    if isinstance(frame, ChunkFrame):
        if existing is None:
            msg = Message(
                id=frame.id,
                role="assistant",
                content=frame.text,
                streaming=True,
                parts=_append_text((), frame.text),
            )
        else:
            msg = replace(
                existing,
                content=existing.content + frame.text,
                parts=_append_text(existing.parts, frame.text),
                streaming=True,
            )

    elif isinstance(frame, CompleteFrame):
        if existing is None:
            msg = Message(id=frame.id, role="assistant", streaming=False)
        elif not existing.streaming:
            return transcript
        else:
            msg = replace(existing, streaming=False)

    elif isinstance(frame, OptionsFrame):
        if existing is None:
            msg = Message(id=frame.id, role="assistant", options=frame.options)
        else:
            msg = replace(existing, options=frame.options)

    else:
        if existing is None:
            msg = Message(
                id=frame.id,
                role=frame.role,
                content=frame.content,
                timestamp=frame.timestamp if frame.timestamp is not None else now_ms(),
                streaming=frame.streaming,
                parts=frame.parts,
                options=frame.options,
                metadata=dict(frame.metadata),
            )
        else:
            msg = replace(
                existing,
                role=frame.role,
                content=frame.content,
                parts=frame.parts,
                metadata=dict(frame.metadata),
                timestamp=frame.timestamp if frame.timestamp is not None else existing.timestamp,
                # Only a chunk may put a completed message back into streaming
                streaming=existing.streaming and frame.streaming,
                options=frame.options if frame.options is not None else existing.options,
            )

    return transcript._upsert(msg)


def fold(frames: Iterable[Frame], transcript: Optional[Transcript] = None) -> Transcript:
    """Apply every frame in order, starting from ``transcript`` (or an empty one)."""
    if transcript is None:
        transcript = Transcript()
    return functools.reduce(apply, frames, transcript)


def append_user_turn(
    transcript: Transcript,
    text: str,
    *,
    message_id: Optional[str] = None,
    timestamp: Optional[int] = None,
) -> Transcript:
    """Append a locally sent user message."""
    frame = FullMessageFrame(
        id=message_id or new_message_id(),
        role="user",
        content=text,
        parts=(Part(text=text),) if text else (),
        timestamp=timestamp if timestamp is not None else now_ms(),
    )
    return apply(transcript, frame)


def clear(transcript: Transcript) -> Transcript:
    """Discard every message."""
    return Transcript()
