#!/usr/bin/env python3
"""
Session management module for the Enclave SMS backend.

Stores one SessionState per sender plus a capped per-sender history log,
in Redis when it is reachable and in process memory otherwise. The redis
client is blocking, so the public methods hop to a worker thread.
"""

import asyncio
import threading
import uuid
from typing import Dict, List, Optional

import redis
from pydantic import ValidationError

from ..schemas.session_models import HistoryEntry, SessionState
from ..utils.errors import SessionLoadFailure, StateConflict
from ..utils.logger import get_logger
from ..utils.security import mask_pii
from .config import Config

logger = get_logger()


def connect_redis() -> Optional[redis.Redis]:
    """Return a live Redis client, or None to fall back to in-memory storage."""
    if not Config.USE_REDIS:
        logger.info("Redis disabled, using in-memory session storage")
        return None
    try:
        client = redis.Redis(
            host=Config.REDIS_HOST,
            port=Config.REDIS_PORT,
            db=Config.REDIS_DB,
            decode_responses=True,
        )
        # Test Redis connection
        client.ping()
        logger.info("Using Redis for session storage")
        return client
    except redis.RedisError as e:
        logger.warning(f"Redis not available ({e}), using in-memory session storage")
        return None


class SessionStore:
    """Per-sender SessionState with compare-and-swap on ``version``."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, prefix: Optional[str] = None):
        self.redis_client = redis_client
        self.use_redis = redis_client is not None
        self.prefix = prefix or Config.SESSION_KEY_PREFIX
        self.memory_sessions: Dict[str, str] = {}  # Fallback in-memory storage
        self._lock = threading.Lock()

    def _get_session_key(self, sender: str) -> str:
        return f"{self.prefix}:session:{sender}"

    def _decode(self, raw: Optional[str]) -> Optional[SessionState]:
        if raw is None:
            return None
        try:
            return SessionState.model_validate_json(raw)
        except ValidationError as e:
            raise SessionLoadFailure(f"unreadable session blob: {e}")

    def _get(self, sender: str) -> Optional[SessionState]:
        if not self.use_redis:
            return self._decode(self.memory_sessions.get(sender))
        try:
            raw = self.redis_client.get(self._get_session_key(sender))
        except redis.RedisError as e:
            raise SessionLoadFailure(str(e))
        return self._decode(raw)

    def _check_version(self, raw: Optional[str], expected_version: Optional[int]) -> int:
        try:
            current = self._decode(raw)
        except SessionLoadFailure:
            if expected_version is not None:
                raise
            # unversioned writes replace an unreadable blob
            current = None
        current_version = current.version if current else 0
        if expected_version is not None and current_version != expected_version:
            raise StateConflict(f"expected version {expected_version}, found {current_version}")
        return current_version

    def _upsert_memory(self, sender: str, state: SessionState, expected_version: Optional[int]) -> SessionState:
        with self._lock:
            version = self._check_version(self.memory_sessions.get(sender), expected_version)
            stored = state.model_copy(update={"version": version + 1})
            self.memory_sessions[sender] = stored.model_dump_json()
            return stored

    def _upsert_redis(self, sender: str, state: SessionState, expected_version: Optional[int]) -> SessionState:
        key = self._get_session_key(sender)
        with self.redis_client.pipeline() as pipe:
            try:
                pipe.watch(key)
                version = self._check_version(pipe.get(key), expected_version)
                stored = state.model_copy(update={"version": version + 1})
                pipe.multi()
                pipe.set(key, stored.model_dump_json())
                pipe.execute()
                return stored
            except redis.WatchError:
                raise StateConflict(f"session {mask_pii(sender)} changed during write")

    def _upsert(self, sender: str, state: SessionState, expected_version: Optional[int]) -> SessionState:
        if self.use_redis:
            return self._upsert_redis(sender, state, expected_version)
        return self._upsert_memory(sender, state, expected_version)

    async def get(self, sender: str) -> Optional[SessionState]:
        """Return the stored state, None when absent; SessionLoadFailure when unreadable."""
        return await asyncio.to_thread(self._get, sender)

    async def upsert(self, sender: str, state: SessionState, expected_version: Optional[int] = None) -> SessionState:
        """
        Store the state and return it with its new version.

        With ``expected_version`` the write only lands if the stored version
        still matches; otherwise StateConflict is raised. Without it the
        write is last-write-wins.
        """
        return await asyncio.to_thread(self._upsert, sender, state, expected_version)


class HistoryLog:
    """Capped per-sender log of (user message, bot response) pairs."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, prefix: Optional[str] = None,
                 max_entries: Optional[int] = None):
        self.redis_client = redis_client
        self.use_redis = redis_client is not None
        self.prefix = prefix or Config.SESSION_KEY_PREFIX
        self.max_entries = max_entries or Config.HISTORY_MAX_ENTRIES
        self.memory_history: Dict[str, List[HistoryEntry]] = {}
        self._lock = threading.Lock()

    def _get_history_key(self, sender: str) -> str:
        return f"{self.prefix}:history:{sender}"

    def _append(self, sender: str, entry: HistoryEntry) -> HistoryEntry:
        if self.use_redis:
            key = self._get_history_key(sender)
            pipe = self.redis_client.pipeline()
            pipe.lpush(key, entry.model_dump_json())
            pipe.ltrim(key, 0, self.max_entries - 1)
            pipe.execute()
            return entry
        with self._lock:
            entries = self.memory_history.setdefault(sender, [])
            entries.append(entry)
            if len(entries) > self.max_entries:
                del entries[: len(entries) - self.max_entries]
        return entry

    def _recent(self, sender: str, limit: int) -> List[HistoryEntry]:
        if limit <= 0:
            return []
        if self.use_redis:
            raw = self.redis_client.lrange(self._get_history_key(sender), 0, limit - 1)
            return [HistoryEntry.model_validate_json(r) for r in reversed(raw)]
        with self._lock:
            return list(self.memory_history.get(sender, [])[-limit:])

    async def append(self, sender: str, user_message: str, bot_response: str,
                     entry_id: Optional[str] = None) -> HistoryEntry:
        entry = HistoryEntry(
            id=entry_id or f"msg_{uuid.uuid4().hex[:12]}",
            user_message=user_message,
            bot_response=bot_response,
        )
        return await asyncio.to_thread(self._append, sender, entry)

    async def recent(self, sender: str, limit: int) -> List[HistoryEntry]:
        """Most recent ``limit`` entries, oldest first."""
        return await asyncio.to_thread(self._recent, sender, limit)
