"""Fold a chunked byte stream of frames into a transcript."""

import logging
from typing import AsyncIterable, AsyncIterator, Union

import httpx

from .frames import FrameDecoder
from .transcript import Transcript, apply

logger = logging.getLogger(__name__)


class StreamInterrupted(Exception):
    """The transport failed before the stream ended.

    Carries the transcript as it stood when the failure happened. Messages
    that never received a ``complete`` frame are still marked streaming.
    """

    def __init__(self, transcript: Transcript, reason: str):
        super().__init__(reason)
        self.transcript = transcript
        self.reason = reason

    @property
    def incomplete_ids(self) -> list[str]:
        return self.transcript.streaming_ids()


class StreamFolder:
    """Incrementally folds raw stream chunks into a transcript.

    Use this when the bytes also have to go somewhere else (e.g. relayed to
    a browser) and the caller drives the read loop itself.
    """

    def __init__(self, transcript: Transcript):
        self.transcript = transcript
        self.frames_applied = 0
        self._decoder = FrameDecoder()

    def feed(self, chunk: Union[bytes, str]) -> list[Transcript]:
        """Apply every complete frame in ``chunk``; return each intermediate transcript."""
        return [self._apply(frame) for frame in self._decoder.feed(chunk)]

    def finish(self) -> list[Transcript]:
        """Apply a trailing line left without a newline at end of stream."""
        return [self._apply(frame) for frame in self._decoder.flush()]

    def _apply(self, frame) -> Transcript:
        self.transcript = apply(self.transcript, frame)
        self.frames_applied += 1
        return self.transcript


async def fold_stream(
    chunks: AsyncIterable[Union[bytes, str]],
    transcript: Transcript,
) -> AsyncIterator[Transcript]:
    """Yield the updated transcript after every frame decoded from ``chunks``.

    Frames are applied strictly in arrival order. Bad lines are skipped by the
    decoder; a transport error raises StreamInterrupted.
    """
    folder = StreamFolder(transcript)
    try:
        async for chunk in chunks:
            for updated in folder.feed(chunk):
                yield updated
    except (httpx.TransportError, httpx.StreamError, OSError) as e:
        logger.warning("Stream interrupted with %d message(s) still streaming: %s",
                       len(folder.transcript.streaming_ids()), e)
        raise StreamInterrupted(folder.transcript, str(e) or type(e).__name__) from e

    for updated in folder.finish():
        yield updated


async def consume_stream(
    chunks: AsyncIterable[Union[bytes, str]],
    transcript: Transcript,
) -> Transcript:
    """Drain ``chunks`` and return the final transcript."""
    async for transcript in fold_stream(chunks, transcript):
        pass
    return transcript
