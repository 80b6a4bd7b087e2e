"""
cache/blacklist.py -- In-memory JWT blacklist for logged-out tokens.

Logout adds the raw token with its original exp (epoch seconds). The auth
resolver rejects any listed token. Entries are worthless once the token has
expired on its own, so purge_expired() drops them; api/main.py runs it from
a lifespan background task every BLACKLIST_PURGE_SECONDS.

Process-local by design: a restart forgets the list. Tokens issued before the
restart keep working until exp, which for caretaker sessions is hours.

Usage:
    blacklist = TokenBlacklist()
    blacklist.add(token, exp)
    blacklist.contains(token)     # True until purged
    blacklist.purge_expired()     # returns number of entries removed
"""

import threading
import time
from typing import Optional


class TokenBlacklist:
    def __init__(self) -> None:
        self._entries: dict[str, float] = {}
        # Sync route handlers run in the threadpool; the purge task runs on
        # the event loop.
        self._lock = threading.Lock()

    def add(self, token: str, expires_at: float) -> None:
        """Blacklist token until expires_at (epoch seconds)."""
        with self._lock:
            self._entries[token] = expires_at

    def contains(self, token: str) -> bool:
        with self._lock:
            return token in self._entries

    def purge_expired(self, now: Optional[float] = None) -> int:
        """Delete entries whose expiry has passed. Returns number of entries removed."""
        cutoff = time.time() if now is None else now
        with self._lock:
            expired = [token for token, exp in self._entries.items() if exp < cutoff]
            for token in expired:
                del self._entries[token]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
