"""CLI entry point for agentchat-debug."""

import json
import logging

import click
import uvicorn

from .export import transcript_to_json, transcript_to_markdown
from .frames import decode_lines, decode_reply
from .transcript import fold


@click.group()
def main():
    """Debug console for chatting with an agent-runtime backend."""
    pass


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
@click.option("--log-level", default="info", type=click.Choice(["debug", "info", "warning", "error"]))
def serve(port: int, host: str, log_level: str):
    """Start the web console."""
    logging.basicConfig(level=log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    click.echo(f"Starting agentchat-debug on http://{host}:{port}")
    uvicorn.run("agentchat_debug.server:app", host=host, port=port, reload=False, log_level=log_level)


@main.command()
@click.argument("frames_file", type=click.File("r", encoding="utf-8"))
@click.option("--format", "fmt", default="json", type=click.Choice(["json", "md"]), help="Output format.")
@click.option("--user", "user_id", default="local", help="User id shown in the output.")
@click.option("--session", "session_id", default="replay", help="Session id shown in the output.")
def replay(frames_file, fmt: str, user_id: str, session_id: str):
    """Rebuild a transcript from a saved reply.

    FRAMES_FILE is either a captured line-delimited frame stream or a
    non-streaming JSON reply (an object or an array of agent events).
    """
    text = frames_file.read()
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None

    # A lone tagged frame is still a one-line stream
    if isinstance(data, list) or (isinstance(data, dict) and "type" not in data):
        frames = decode_reply(data)
    else:
        frames = decode_lines(text.splitlines())

    transcript = fold(frames)
    if fmt == "md":
        click.echo(transcript_to_markdown(user_id, session_id, transcript))
    else:
        click.echo(transcript_to_json(user_id, session_id, transcript))

    incomplete = transcript.streaming_ids()
    if incomplete:
        click.echo(f"warning: {len(incomplete)} message(s) never completed: {', '.join(incomplete)}", err=True)
