"""Transcript persistence.

Storage is a convenience cache, not a source of truth: the reconciler never
depends on a save succeeding. ``TranscriptStore`` is the port; the server
picks an implementation at startup.
"""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from .core import SessionConfig, now_ms
from .transcript import Transcript

logger = logging.getLogger(__name__)

SessionKey = tuple[str, str]  # (user_id, session_id)


class TranscriptStore(ABC):
    """Base class for transcript storage backends."""

    @abstractmethod
    def save(self, key: SessionKey, transcript: Transcript) -> None:
        """Store ``transcript`` under ``key``, replacing any previous copy."""
        ...

    @abstractmethod
    def load(self, key: SessionKey) -> Optional[Transcript]:
        """Return the stored transcript, or None if there is none."""
        ...

    @abstractmethod
    def clear(self, key: SessionKey) -> None:
        """Forget the transcript stored under ``key``."""
        ...

    @abstractmethod
    def keys(self) -> list[SessionKey]:
        """Return every stored session key."""
        ...

    @abstractmethod
    def save_config(self, config: SessionConfig) -> None:
        ...

    @abstractmethod
    def load_config(self) -> Optional[SessionConfig]:
        ...


class MemoryStore(TranscriptStore):
    """Process-local storage, lost on restart."""

    def __init__(self):
        self._transcripts: dict[SessionKey, Transcript] = {}
        self._config: Optional[SessionConfig] = None

    def save(self, key: SessionKey, transcript: Transcript) -> None:
        self._transcripts[key] = transcript

    def load(self, key: SessionKey) -> Optional[Transcript]:
        return self._transcripts.get(key)

    def clear(self, key: SessionKey) -> None:
        self._transcripts.pop(key, None)

    def keys(self) -> list[SessionKey]:
        return list(self._transcripts)

    def save_config(self, config: SessionConfig) -> None:
        self._config = config

    def load_config(self) -> Optional[SessionConfig]:
        return self._config


class JsonFileStore(TranscriptStore):
    """One JSON file per session under ``<directory>/sessions``.

    Writes go through a temp file and ``os.replace`` so a crash never leaves
    a half-written transcript behind.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    @property
    def sessions_dir(self) -> Path:
        return self.directory / "sessions"

    @property
    def config_path(self) -> Path:
        return self.directory / "session_config.json"

    def save(self, key: SessionKey, transcript: Transcript) -> None:
        user_id, session_id = key
        data = {
            "userId": user_id,
            "sessionId": session_id,
            "savedAt": now_ms(),
            "messages": transcript.to_dicts(),
        }
        _write_json(self._path(key), data)

    def load(self, key: SessionKey) -> Optional[Transcript]:
        path = self._path(key)
        if not path.exists():
            return None
        data = _read_json(path)
        if not isinstance(data, dict):
            return None
        messages = data.get("messages")
        if not isinstance(messages, list):
            logger.warning("Transcript file %s has no message list", path)
            return None
        try:
            return Transcript.from_dicts(messages)
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring transcript file %s with invalid messages: %s", path, e)
            return None

    def clear(self, key: SessionKey) -> None:
        self._path(key).unlink(missing_ok=True)

    def keys(self) -> list[SessionKey]:
        if not self.sessions_dir.is_dir():
            return []

        keys = []
        for path in sorted(self.sessions_dir.glob("*.json")):
            data = _read_json(path)
            if isinstance(data, dict) and data.get("userId") and data.get("sessionId"):
                keys.append((data["userId"], data["sessionId"]))
        return keys

    def save_config(self, config: SessionConfig) -> None:
        _write_json(self.config_path, config.to_dict())

    def load_config(self) -> Optional[SessionConfig]:
        if not self.config_path.exists():
            return None
        data = _read_json(self.config_path)
        if not isinstance(data, dict):
            return None
        return SessionConfig.from_dict(data)

    def _path(self, key: SessionKey) -> Path:
        user_id, session_id = key
        return self.sessions_dir / f"{quote(user_id, safe='')}@{quote(session_id, safe='')}.json"


def _read_json(path: Path):
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to read %s: %s", path, e)
        return None


def _write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=path.stem, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
