"""Export transcripts and session configs to Markdown and JSON."""

import json
from datetime import datetime, timezone

from .core import Message, SessionConfig
from .transcript import Transcript


def _format_ts(timestamp_ms: int) -> str:
    try:
        return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    except (OverflowError, OSError, ValueError):
        return str(timestamp_ms)


def _part_lines(msg: Message) -> list[str]:
    """Render function-call and function-result parts; text is already in content."""
    lines = []
    for part in msg.parts:
        if part.function_call is not None:
            fc = part.function_call
            lines.append(f"**Function call** `{fc.name}`")
            lines.extend(["```json", json.dumps(fc.args, indent=2, ensure_ascii=False), "```", ""])
        elif part.function_response is not None:
            fr = part.function_response
            lines.append(f"**Function result** `{fr.name}`")
            lines.extend(["```json", json.dumps(fr.response, indent=2, ensure_ascii=False, default=str), "```", ""])
    return lines


def transcript_to_markdown(user_id: str, session_id: str, transcript: Transcript) -> str:
    """Export a transcript as readable Markdown."""
    lines = [f"# Chat {session_id}", ""]
    lines.append(f"**User:** {user_id}")
    lines.append(f"**Session:** {session_id}")
    lines.append(f"**Messages:** {len(transcript)}")
    lines.extend(["", "---", ""])

    for msg in transcript:
        heading = msg.role.capitalize()
        author = msg.metadata.get("author")
        if author and msg.role != "user":
            heading = f"{heading} · {author}"
        suffix = " (incomplete)" if msg.streaming else ""
        lines.append(f"## {heading} ({_format_ts(msg.timestamp)}){suffix}")
        lines.append("")
        if msg.content:
            lines.append(msg.content)
            lines.append("")
        lines.extend(_part_lines(msg))
        if msg.options:
            lines.append("Options: " + " | ".join(msg.options))
            lines.append("")
        lines.extend(["---", ""])

    return "\n".join(lines)


def transcript_to_json(user_id: str, session_id: str, transcript: Transcript) -> str:
    """Export a transcript as structured JSON."""
    data = {
        "userId": user_id,
        "sessionId": session_id,
        "messages": transcript.to_dicts(),
        "exportedAt": datetime.now(timezone.utc).isoformat(),
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def config_to_json(config: SessionConfig) -> str:
    return json.dumps(config.to_dict(), indent=2, ensure_ascii=False)
