"""Registry of live cleaning sessions.

Sessions are kept in memory between separate calls of the surrounding
application. The registry is an explicit object handed to the service that
orchestrates sessions, with two eviction rules:

- LRU: at most ``max_entries`` sessions; registering one more drops the
  least recently used.
- TTL: a session idle for longer than ``ttl_seconds`` is expired on access
  or by :meth:`SessionRegistry.cleanup_expired`.

Key features:
- Thread-safe storage
- Optional background cleanup thread
- Injectable clock for tests
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from sheet_cleaner.config import settings
from sheet_cleaner.utils.exceptions import SessionExpiredError, SessionNotFoundError
from sheet_cleaner.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class SessionRegistryConfig:
    """Configuration for the session registry."""

    max_entries: int = field(default_factory=lambda: settings.session_cache_size)
    ttl_seconds: int = field(default_factory=lambda: settings.session_ttl_seconds)
    cleanup_interval_seconds: int = 300
    enable_auto_cleanup: bool = False


@dataclass
class _Entry(Generic[T]):
    value: T
    last_access: float


class SessionRegistry(Generic[T]):
    """Thread-safe LRU + TTL map from session id to session object."""

    def __init__(
        self,
        config: SessionRegistryConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or SessionRegistryConfig()
        self._clock = clock
        self._entries: OrderedDict[str, _Entry[T]] = OrderedDict()
        self._lock = threading.RLock()
        self._cleanup_thread: threading.Thread | None = None
        self._stop_cleanup = threading.Event()

        if self.config.enable_auto_cleanup:
            self._start_cleanup_thread()

    def _start_cleanup_thread(self) -> None:
        self._stop_cleanup.clear()
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop,
            daemon=True,
            name="SessionRegistryCleanup",
        )
        self._cleanup_thread.start()
        logger.info("Session registry cleanup thread started")

    def _cleanup_loop(self) -> None:
        while not self._stop_cleanup.wait(self.config.cleanup_interval_seconds):
            self.cleanup_expired()

    def stop_cleanup(self) -> None:
        """Stop the background cleanup thread."""
        self._stop_cleanup.set()
        if self._cleanup_thread and self._cleanup_thread.is_alive():
            self._cleanup_thread.join(timeout=5.0)
            logger.info("Session registry cleanup thread stopped")

    def put(self, session_id: str, value: T) -> None:
        """Register or replace a session, evicting the LRU entry if full."""
        with self._lock:
            self._entries[session_id] = _Entry(value=value, last_access=self._clock())
            self._entries.move_to_end(session_id)
            while len(self._entries) > self.config.max_entries:
                evicted_id, _ = self._entries.popitem(last=False)
                logger.info("Session evicted (capacity)", session_id=evicted_id)

    def get(self, session_id: str) -> T:
        """Return a session and mark it most recently used.

        Raises:
            SessionNotFoundError: If the id is not registered.
            SessionExpiredError: If the session was idle past the TTL; it is
                removed.
        """
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                raise SessionNotFoundError(session_id)

            now = self._clock()
            if now - entry.last_access > self.config.ttl_seconds:
                del self._entries[session_id]
                raise SessionExpiredError(
                    session_id, ttl_hours=self.config.ttl_seconds // 3600 or None
                )

            entry.last_access = now
            self._entries.move_to_end(session_id)
            return entry.value

    def contains(self, session_id: str) -> bool:
        """Whether a live (registered and unexpired) session exists."""
        try:
            self.get(session_id)
            return True
        except (SessionNotFoundError, SessionExpiredError):
            return False

    def remove(self, session_id: str) -> bool:
        with self._lock:
            return self._entries.pop(session_id, None) is not None

    def cleanup_expired(self) -> int:
        """Remove every session idle past the TTL.

        Returns:
            Number of sessions removed.
        """
        now = self._clock()
        with self._lock:
            expired = [
                sid
                for sid, entry in self._entries.items()
                if now - entry.last_access > self.config.ttl_seconds
            ]
            for sid in expired:
                del self._entries[sid]

        if expired:
            logger.info("Expired sessions cleaned up", count=len(expired))
        return len(expired)

    def session_ids(self) -> list[str]:
        """Ids from least to most recently used."""
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("All sessions cleared")
