"""Tests for folding a chunked stream into a transcript."""

import httpx
import pytest

from agentchat_debug.stream import StreamFolder, StreamInterrupted, consume_stream, fold_stream
from agentchat_debug.transcript import Transcript, append_user_turn

from conftest import split_bytes


async def _aiter(chunks, fail_after=None):
    for i, chunk in enumerate(chunks):
        if fail_after is not None and i >= fail_after:
            raise httpx.ReadError("connection reset by peer")
        yield chunk


@pytest.mark.asyncio
async def test_fold_stream_builds_final_message(stream_lines):
    start = append_user_turn(Transcript(), "hi")
    final = await consume_stream(_aiter(split_bytes(stream_lines)), start)

    assert len(final) == 2
    assert final[0].role == "user"
    reply = final.get("m1")
    assert reply.content == "Hello, how can I help?"
    assert reply.options == ("Book a visit", "Ask a question")
    assert reply.streaming is False


@pytest.mark.asyncio
async def test_fold_stream_yields_after_every_frame(stream_lines):
    snapshots = [t async for t in fold_stream(_aiter(split_bytes(stream_lines, size=3)), Transcript())]
    # chunk, chunk, options, complete; noise lines produce nothing
    assert len(snapshots) == 4
    assert snapshots[0].get("m1").content == "Hello"
    assert snapshots[0].get("m1").streaming is True
    assert snapshots[-1].get("m1").streaming is False


@pytest.mark.asyncio
async def test_trailing_line_without_newline_is_applied():
    chunks = [b'{"type":"chunk","id":"a","content":"x"}\n', b'{"type":"complete","id":"a"}']
    final = await consume_stream(_aiter(chunks), Transcript())
    assert final.get("a").streaming is False


@pytest.mark.asyncio
async def test_transport_failure_leaves_message_streaming(stream_lines):
    chunks = [line.encode("utf-8") for line in stream_lines]
    seen = []
    with pytest.raises(StreamInterrupted) as exc_info:
        async for t in fold_stream(_aiter(chunks, fail_after=3), Transcript()):
            seen.append(t)

    err = exc_info.value
    assert err.incomplete_ids == ["m1"]
    assert err.transcript.get("m1").content == "Hello, how can I help?"
    assert err.transcript.get("m1").streaming is True
    assert "connection reset" in err.reason
    assert isinstance(err.__cause__, httpx.ReadError)
    assert seen[-1] == err.transcript


def test_stream_folder_counts_frames(stream_lines):
    folder = StreamFolder(Transcript())
    for chunk in split_bytes(stream_lines, size=11):
        folder.feed(chunk)
    folder.finish()
    assert folder.frames_applied == 4
    assert folder.transcript.get("m1").options == ("Book a visit", "Ask a question")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "bad_line",
    [
        b'{"type":"message","id":"e1","content":"x","timestamp":Infinity}\n',
        b'{"type":"message","id":"e1","content":"x","timestamp":NaN}\n',
        b'{"id":"e1","content":{"parts":5}}\n',
    ],
)
async def test_malformed_frame_does_not_stop_the_fold(bad_line):
    chunks = [b'{"type":"chunk","id":"m1","content":"Hel"}\n', bad_line, b'{"type":"complete","id":"m1"}\n']
    final = await consume_stream(_aiter(chunks), Transcript())
    assert final.get("m1").content == "Hel"
    assert final.get("m1").streaming is False
    assert "e1" in final
