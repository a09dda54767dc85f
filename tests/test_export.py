"""Tests for export functionality."""

import json

import pytest

from agentchat_debug.core import FunctionCall, FunctionResponse, Part, SessionConfig
from agentchat_debug.export import config_to_json, transcript_to_json, transcript_to_markdown
from agentchat_debug.frames import ChunkFrame, FullMessageFrame, OptionsFrame
from agentchat_debug.transcript import Transcript, append_user_turn, fold


@pytest.fixture
def sample_transcript():
    t = append_user_turn(Transcript(), "What's the weather in Oslo?", message_id="u1", timestamp=1736935200000)
    return fold(
        [
            FullMessageFrame(
                id="evt-1",
                parts=(Part(function_call=FunctionCall(id="fc-1", name="get_weather", args={"city": "Oslo"})),),
                metadata={"author": "weather_agent"},
                timestamp=1736935201000,
            ),
            FullMessageFrame(
                id="evt-2",
                role="user",
                parts=(Part(function_response=FunctionResponse(id="fc-1", name="get_weather", response={"result": "sunny"})),),
                timestamp=1736935202000,
            ),
            ChunkFrame(id="m1", text="It is sunny."),
            OptionsFrame(id="m1", options=("Tomorrow?", "Thanks")),
        ],
        t,
    )


class TestMarkdownExport:
    def test_header(self, sample_transcript):
        md = transcript_to_markdown("u_123", "s_1", sample_transcript)
        assert md.startswith("# Chat s_1")
        assert "**User:** u_123" in md
        assert "**Messages:** 4" in md

    def test_messages_and_parts(self, sample_transcript):
        md = transcript_to_markdown("u_123", "s_1", sample_transcript)
        assert "## User (2025-01-15 10:00:00)" in md
        assert "What's the weather in Oslo?" in md
        assert "## Assistant · weather_agent" in md
        assert "**Function call** `get_weather`" in md
        assert '"city": "Oslo"' in md
        assert "**Function result** `get_weather`" in md
        assert "Options: Tomorrow? | Thanks" in md

    def test_incomplete_message_is_flagged(self, sample_transcript):
        md = transcript_to_markdown("u_123", "s_1", sample_transcript)
        assert md.count("(incomplete)") == 1

    def test_unrenderable_timestamp_falls_back_to_raw_value(self):
        t = append_user_turn(Transcript(), "hi", message_id="u1", timestamp=10**20)
        md = transcript_to_markdown("u", "s", t)
        assert f"## User ({10**20})" in md

    def test_empty(self):
        md = transcript_to_markdown("u", "s", Transcript())
        assert "**Messages:** 0" in md


class TestJsonExport:
    def test_structure(self, sample_transcript):
        data = json.loads(transcript_to_json("u_123", "s_1", sample_transcript))
        assert data["userId"] == "u_123"
        assert data["sessionId"] == "s_1"
        assert "exportedAt" in data
        assert [m["id"] for m in data["messages"]] == ["u1", "evt-1", "evt-2", "m1"]
        assert data["messages"][1]["parts"][0]["functionCall"]["name"] == "get_weather"
        assert data["messages"][3]["options"] == ["Tomorrow?", "Thanks"]
        assert data["messages"][3]["streaming"] is True

    def test_unicode_preserved(self):
        t = append_user_turn(Transcript(), "héllo ✓")
        assert "héllo ✓" in transcript_to_json("u", "s", t)

    def test_config(self):
        config = SessionConfig(user_id="u", session_id="s", app_name="multi_tool_agent", state="{}")
        assert json.loads(config_to_json(config)) == {
            "userId": "u",
            "sessionId": "s",
            "appName": "multi_tool_agent",
            "state": "{}",
        }
