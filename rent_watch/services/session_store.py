"""
Per-user conversation session store.

Each user gets a session entry guarded by its own asyncio lock. Holding the
lock is the only way to read or mutate a session, which serializes events
from one user in arrival order while different users proceed independently.
Entries idle for longer than the TTL are reaped; locked entries never are.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable, Dict, Optional

from ..models.conversation import ConversationSession
from ..utils.logging import get_logger

logger = get_logger("conversation.sessions")


@dataclass
class _SessionEntry:
    session: ConversationSession
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class SessionStore:
    """Keyed store of wizard sessions with per-user serialization."""

    def __init__(
        self,
        ttl_seconds: int = 1800,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize session store.

        Args:
            ttl_seconds: Idle time after which an unlocked session is dropped
            clock: Source of the current time
        """
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._entries: Dict[int, _SessionEntry] = {}

    def _get_entry(self, user_id: int) -> _SessionEntry:
        entry = self._entries.get(user_id)
        if entry is None:
            entry = _SessionEntry(
                session=ConversationSession(user_id=user_id, last_activity=self._clock())
            )
            self._entries[user_id] = entry
        return entry

    @asynccontextmanager
    async def session(self, user_id: int) -> AsyncIterator[ConversationSession]:
        """Hold the user's lock and yield their session."""
        while True:
            entry = self._get_entry(user_id)
            await entry.lock.acquire()
            if self._entries.get(user_id) is entry:
                break
            # reaped while we were waiting; retry with the live entry
            entry.lock.release()

        try:
            yield entry.session
        finally:
            entry.session.touch(self._clock())
            entry.lock.release()

    def peek(self, user_id: int) -> Optional[ConversationSession]:
        """Return the session without locking. For status output and tests."""
        entry = self._entries.get(user_id)
        return entry.session if entry else None

    def is_busy(self, user_id: int) -> bool:
        entry = self._entries.get(user_id)
        return bool(entry and entry.lock.locked())

    def reap_idle(self) -> int:
        """Drop sessions idle longer than the TTL. Returns the number removed."""
        cutoff = self._clock() - self.ttl
        expired = [
            user_id
            for user_id, entry in self._entries.items()
            if not entry.lock.locked() and entry.session.last_activity < cutoff
        ]
        for user_id in expired:
            del self._entries[user_id]

        if expired:
            logger.info("Reaped idle sessions", extra={"count": len(expired)})
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
