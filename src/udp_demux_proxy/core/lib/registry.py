"""Thread-safe mapping of session keys to forwarding sessions.

The registry lock only guards the mapping and is never held while a session
opens its backend socket, since resolving the backend name can block for as long
as DNS takes. Creation is serialized per key instead: concurrent datagrams from
the same client and protocol wait on that key's creation lock and then find the
session the first one built. Inserting still compares against the mapping, so if
two creators ever race the loser is discarded before it starts.

Sessions remove themselves through :meth:`ConnectionRegistry.remove`, which
checks identity so that a session ending late cannot evict its replacement.
"""

import threading
from collections.abc import Callable

from loguru import logger

from udp_demux_proxy.core.config import Address

from .session import ForwardingSession, SessionKey

SessionFactory = Callable[[SessionKey, Address], ForwardingSession]


class ConnectionRegistry:
    """Owns the live sessions of one proxy instance."""

    def __init__(self, session_factory: SessionFactory) -> None:
        """Initialize an empty registry.

        Args:
            session_factory: Builds a new, not yet started session for a key and
                backend address. May raise ``SessionError``.
        """
        self._session_factory = session_factory
        self._sessions: dict[SessionKey, ForwardingSession] = {}
        self._creating: dict[SessionKey, threading.Lock] = {}
        self._lock = threading.Lock()

    def _find_live(self, key: SessionKey) -> ForwardingSession | None:
        # Caller holds self._lock
        session = self._sessions.get(key)
        if session is not None and session.is_alive:
            session.touch()
            return session
        return None

    def _release_creating(self, key: SessionKey, creating: threading.Lock) -> None:
        # Caller holds self._lock
        if self._creating.get(key) is creating:
            del self._creating[key]

    def lookup_or_create(self, key: SessionKey, backend: Address) -> ForwardingSession:
        """Return the live session for ``key``, creating it if needed.

        An existing session gets its idle deadline pushed back. A session that
        has already ended but not yet removed itself is replaced.

        Raises:
            SessionError: If a new session cannot open its backend socket
        """
        with self._lock:
            session = self._find_live(key)
            if session is not None:
                return session
            creating = self._creating.setdefault(key, threading.Lock())

        with creating:
            with self._lock:
                session = self._find_live(key)
            if session is not None:
                return session

            try:
                session = self._session_factory(key, backend)
            except Exception:
                with self._lock:
                    self._release_creating(key, creating)
                raise

            with self._lock:
                winner = self._find_live(key)
                if winner is None:
                    self._sessions[key] = session
                self._release_creating(key, creating)

        if winner is not None:
            session.terminate("superseded by a concurrent session")
            return winner

        session.start()
        return session

    def remove(self, key: SessionKey, session: ForwardingSession) -> bool:
        """Remove ``key`` if it still maps to ``session``.

        Returns:
            bool: True if the mapping was removed
        """
        with self._lock:
            if self._sessions.get(key) is not session:
                return False
            del self._sessions[key]
        logger.debug(f"Session {key} removed from registry")
        return True

    def get(self, key: SessionKey) -> ForwardingSession | None:
        with self._lock:
            return self._sessions.get(key)

    def snapshot(self) -> list[ForwardingSession]:
        """Copy of the current sessions, safe to iterate without the lock."""
        with self._lock:
            return list(self._sessions.values())

    def close_all(self, reason: str = "proxy shutting down") -> int:
        """Terminate every session.

        Returns:
            int: Number of sessions terminated
        """
        return sum(session.terminate(reason) for session in self.snapshot())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
