"""Statistics tracking for the demultiplexing proxy.

This module provides real-time statistics for one proxy instance, including:
- Datagram and byte counters in both directions
- Dropped datagram counting
- Session counts per protocol
- Historical bandwidth data

Every proxy owns its own ``ProxyStats``; the listener, the sessions and the UI
all share that instance. All updates are guarded by one lock.

Example:
    stats = ProxyStats()
    stats.session_opened(ProtocolTag.WIREGUARD)
    stats.datagram_forwarded(148)
    stats.datagram_relayed(92)
"""

import threading
import time
from collections import Counter, deque
from datetime import UTC, datetime

from udp_demux_proxy.core.classifier import ProtocolTag

BANDWIDTH_WINDOW = 5  # Seconds
BANDWIDTH_HISTORY = 60  # One bucket per second


class ProxyStats:
    """Thread-safe statistics tracker for the proxy.

    Maintains real-time statistics about proxy operations including:
    - Active and total session counts per protocol
    - Bandwidth usage and history
    - Datagrams and bytes forwarded to backends and relayed to clients
    - Datagrams dropped before reaching a backend
    """

    def __init__(self) -> None:
        """Initialize proxy statistics tracker with zeroed counters."""
        self.datagrams_forwarded = 0
        self.datagrams_relayed = 0
        self.datagrams_dropped = 0
        self.bytes_forwarded = 0
        self.bytes_relayed = 0
        self.sessions_created = 0
        self.active_sessions: Counter[ProtocolTag] = Counter()
        # [second, bytes] pairs, newest last
        self.bandwidth_history: deque[list[int]] = deque(maxlen=BANDWIDTH_HISTORY)
        self.start_time = datetime.now(tz=UTC)
        self._lock = threading.Lock()

    def datagram_forwarded(self, size: int) -> None:
        """Record a client datagram sent to a backend."""
        with self._lock:
            self.datagrams_forwarded += 1
            self.bytes_forwarded += size
            self._record_bandwidth(size)

    def datagram_relayed(self, size: int) -> None:
        """Record a backend datagram sent back to a client."""
        with self._lock:
            self.datagrams_relayed += 1
            self.bytes_relayed += size
            self._record_bandwidth(size)

    def _record_bandwidth(self, size: int) -> None:
        # Caller holds self._lock
        second = int(time.time())
        if self.bandwidth_history and self.bandwidth_history[-1][0] == second:
            self.bandwidth_history[-1][1] += size
        else:
            self.bandwidth_history.append([second, size])

    def datagram_dropped(self) -> None:
        """Record a client datagram that never reached a backend."""
        with self._lock:
            self.datagrams_dropped += 1

    def session_opened(self, tag: ProtocolTag) -> None:
        """Record a new forwarding session."""
        with self._lock:
            self.sessions_created += 1
            self.active_sessions[tag] += 1

    def session_closed(self, tag: ProtocolTag) -> None:
        """Record a terminated forwarding session."""
        with self._lock:
            self.active_sessions[tag] -= 1

    @property
    def total_active_sessions(self) -> int:
        with self._lock:
            return sum(self.active_sessions.values())

    def get_bandwidth(self) -> float:
        """Calculate current bandwidth usage in bytes per second.

        Returns:
            float: Average bandwidth over the last few seconds in bytes/second
        """
        with self._lock:
            cutoff = int(time.time()) - BANDWIDTH_WINDOW
            total_bytes = sum(size for second, size in self.bandwidth_history if second > cutoff)
            return total_bytes / BANDWIDTH_WINDOW
