from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from .config import SESSION_SWEEP_INTERVAL_SECONDS
from .utils import _log_debug, now_seoul


def new_session_id(user_id: Optional[str], now: Optional[datetime] = None) -> str:
    """``{user}_{epoch millis}``. Unique enough per user in practice."""
    moment = now or now_seoul()
    return f"{user_id or 'unknown'}_{int(moment.timestamp() * 1000)}"


class SessionStore:
    """TTL-bound session payloads keyed by opaque session id.

    Expiry is checked on every read; ``sweep`` only reclaims memory.
    Destructive consumers take ``lock(session_id)`` around get/act/delete so
    a second consumer of the same id observes "not found".
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_id: object) -> bool:
        return isinstance(session_id, str) and self.get(session_id) is not None

    def put(self, session_id: str, payload: Any, ttl: float) -> None:
        if not session_id:
            raise ValueError("session_id is empty")
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self._entries[session_id] = (payload, self._clock() + ttl)
        _log_debug(f"[SESSION] put {session_id} ttl={ttl}s")

    def get(self, session_id: str) -> Optional[Any]:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        payload, expires_at = entry
        if self._clock() >= expires_at:
            self._drop(session_id)
            _log_debug(f"[SESSION] expired {session_id}")
            return None
        return payload

    def pop(self, session_id: str) -> Optional[Any]:
        payload = self.get(session_id)
        self._drop(session_id)
        return payload

    def delete(self, session_id: str) -> bool:
        existed = session_id in self._entries
        self._drop(session_id)
        return existed

    def expires_in(self, session_id: str) -> Optional[float]:
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        remaining = entry[1] - self._clock()
        return remaining if remaining > 0 else None

    def sweep(self) -> int:
        now = self._clock()
        expired = [sid for sid, (_, exp) in self._entries.items() if now >= exp]
        for sid in expired:
            self._drop(sid)
        stale_locks = [sid for sid, lock in self._locks.items()
                       if sid not in self._entries and not lock.locked()]
        for sid in stale_locks:
            self._locks.pop(sid, None)
        if expired:
            _log_debug(f"[SESSION] swept {len(expired)} expired sessions")
        return len(expired)

    def lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def _drop(self, session_id: str) -> None:
        self._entries.pop(session_id, None)
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            self._locks.pop(session_id, None)

    async def run_sweeper(self,
                          interval: float = SESSION_SWEEP_INTERVAL_SECONDS) -> None:
        while True:
            await asyncio.sleep(interval)
            self.sweep()
