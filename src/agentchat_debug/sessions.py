"""Per-session transcript ownership for the server."""

import asyncio
import logging
from typing import Optional

from .storage import SessionKey, TranscriptStore
from .transcript import Transcript

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Holds the live transcript of every session the server has seen.

    Only one writer may reconcile into a given transcript at a time; callers
    take ``lock(key)`` around a read-modify-write. Saves to the backing store
    are best effort and never fail the caller.
    """

    def __init__(self, store: TranscriptStore):
        self.store = store
        self._transcripts: dict[SessionKey, Transcript] = {}
        self._locks: dict[SessionKey, asyncio.Lock] = {}

    def lock(self, key: SessionKey) -> asyncio.Lock:
        # One lock per session seen, kept for the life of the registry
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def get(self, key: SessionKey) -> Transcript:
        transcript = self._transcripts.get(key)
        if transcript is None:
            transcript = self._load(key) or Transcript()
            self._transcripts[key] = transcript
        return transcript

    def put(self, key: SessionKey, transcript: Transcript, *, persist: bool = True) -> None:
        self._transcripts[key] = transcript
        if persist:
            self.persist(key)

    def persist(self, key: SessionKey) -> None:
        transcript = self._transcripts.get(key)
        if transcript is None:
            return
        try:
            self.store.save(key, transcript)
        except OSError as e:
            logger.warning("Failed to save transcript for %s/%s: %s", key[0], key[1], e)

    def clear(self, key: SessionKey) -> None:
        try:
            self.store.clear(key)
        except OSError as e:
            logger.warning("Failed to clear stored transcript for %s/%s: %s", key[0], key[1], e)
            # Keep an empty entry so the stale file is not reloaded
            self._transcripts[key] = Transcript()
        else:
            self._transcripts.pop(key, None)

    def _load(self, key: SessionKey) -> Optional[Transcript]:
        try:
            return self.store.load(key)
        except OSError as e:
            logger.warning("Failed to load transcript for %s/%s: %s", key[0], key[1], e)
            return None
