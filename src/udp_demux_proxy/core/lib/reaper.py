"""Periodic sweep for sessions that outlived their idle timeout.

Sessions enforce their own idle deadline in the relay loop. The reaper is a
safety net on top of that: every ``interval`` seconds it terminates sessions
that are past their deadline, and sessions whose relay thread is gone without
having cleaned up.
"""

import threading

from loguru import logger

from .registry import ConnectionRegistry
from .session import SessionState


class IdleReaper:
    """Background thread sweeping a registry for stale sessions."""

    def __init__(self, registry: ConnectionRegistry, interval: float) -> None:
        self.registry = registry
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def sweep(self) -> int:
        """Terminate stale sessions once.

        Returns:
            int: Number of sessions terminated by this sweep
        """
        reaped = 0
        for session in self.registry.snapshot():
            if session.check_idle():
                reaped += 1
            elif session.state is SessionState.ACTIVE and not session.relay_running:
                logger.warning(f"Session {session.key} relay thread exited without cleanup")
                if session.terminate("relay thread exited"):
                    reaped += 1

        if reaped:
            logger.debug(f"Reaper terminated {reaped} session(s), {len(self.registry)} left")
        return reaped

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="idle-reaper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Reaper sweep failed")
