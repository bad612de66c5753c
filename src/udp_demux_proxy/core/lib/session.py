"""Forwarding sessions between one client and one backend.

A ``ForwardingSession`` exists for each (client address, protocol) pair. It owns a
dedicated UDP socket connected to the backend and a relay thread which is the only
code that ever reads or writes that socket. The relay thread waits on three things
at once:
- a reply from the backend, relayed to the client through the listener's socket
- a datagram queued by the listener, sent on to the backend
- the idle deadline, pushed back by every send or receive

State machine::

    CREATED --start()--> ACTIVE --terminate()--> TERMINATED
       |                                             ^
       +-----------------terminate()-----------------+

``terminate()`` is the single terminal transition. It runs once, removes the
session from the registry it was created by and releases the sockets. Socket
errors, the idle deadline and the reaper all end up there.

Example:
    session = ForwardingSession(key, ("wireguard", 51820), registry, client_sock)
    session.start()
    session.submit(datagram)
"""

import contextlib
import queue
import selectors
import socket
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING, NamedTuple

from loguru import logger

from udp_demux_proxy.core.classifier import ProtocolTag
from udp_demux_proxy.core.config import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_IDLE_TIMEOUT,
    DEFAULT_QUEUE_SIZE,
    Address,
)
from udp_demux_proxy.core.exceptions import SessionError
from udp_demux_proxy.core.utils.utils import format_address, hex_preview

if TYPE_CHECKING:
    from .proxy_stats import ProxyStats
    from .registry import ConnectionRegistry

# Type aliases
Clock = Callable[[], float]
SocketFactory = Callable[[Address], socket.socket]

WAKEUP_READ_SIZE = 4096


class SessionKey(NamedTuple):
    """Identity of a session: the client address and the protocol it speaks."""

    client: Address
    protocol: ProtocolTag

    def __str__(self) -> str:
        return f"{format_address(self.client)}/{self.protocol}"


class SessionState(Enum):
    """Lifecycle of a forwarding session."""

    CREATED = "created"
    ACTIVE = "active"
    TERMINATED = "terminated"


def open_backend_socket(address: Address) -> socket.socket:
    """Create a UDP socket bound to an ephemeral port and connected to ``address``.

    Args:
        address: Backend ``(host, port)``; the host may be a name

    Returns:
        socket.socket: Connected datagram socket

    Raises:
        OSError: If the name does not resolve or no address accepts the connect
    """
    host, port = address[0], address[1]
    addrinfo = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)

    last_error: OSError | None = None
    for family, sock_type, proto, _, sockaddr in addrinfo:
        sock = socket.socket(family, sock_type, proto)
        try:
            sock.bind(("::", 0) if family == socket.AF_INET6 else ("0.0.0.0", 0))
            sock.connect(sockaddr)
            return sock
        except OSError as e:
            sock.close()
            last_error = e

    raise last_error or OSError(f"No usable address for {format_address(address)}")


class ForwardingSession:
    """Relay between one client and its backend."""

    def __init__(
        self,
        key: SessionKey,
        backend: Address,
        registry: "ConnectionRegistry",
        client_sock: socket.socket,
        *,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        clock: Clock = time.monotonic,
        socket_factory: SocketFactory = open_backend_socket,
        stats: "ProxyStats | None" = None,
    ) -> None:
        """Open the backend socket for a new session.

        Args:
            key: Client address and protocol this session serves
            backend: Backend address the socket connects to
            registry: Registry the session removes itself from when it ends
            client_sock: Listener socket used to send replies to the client
            idle_timeout: Seconds without traffic before the session ends
            buffer_size: Largest backend datagram that is relayed intact
            queue_size: Datagrams that may wait for the relay thread
            clock: Monotonic time source
            socket_factory: Opens the connected backend socket
            stats: Shared statistics tracker

        Raises:
            SessionError: If the backend socket cannot be opened
        """
        self.key = key
        self.backend = backend
        self.idle_timeout = idle_timeout
        self._registry = registry
        self._client_sock = client_sock
        self._buffer_size = buffer_size
        self._clock = clock
        self._stats = stats

        self._lock = threading.Lock()
        self._state = SessionState.CREATED
        self._last_activity = clock()
        self._outbound: queue.Queue[bytes] = queue.Queue(maxsize=queue_size)
        self._thread: threading.Thread | None = None

        try:
            self._sock = socket_factory(backend)
        except OSError as e:
            raise SessionError(
                f"Cannot open backend socket to {format_address(backend)} for {key}: {e}"
            ) from e

        # Lets the listener interrupt the relay thread's wait
        try:
            self._wake_r, self._wake_w = socket.socketpair()
        except OSError as e:
            with contextlib.suppress(OSError):
                self._sock.close()
            raise SessionError(f"Cannot create wakeup channel for {key}: {e}") from e
        self._wake_w.setblocking(False)

        if self._stats:
            self._stats.session_opened(key.protocol)
        logger.info(f"Session {key} opened towards {format_address(backend)}")

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def is_alive(self) -> bool:
        """Whether the session still accepts datagrams."""
        return self.state is not SessionState.TERMINATED

    @property
    def last_activity(self) -> float:
        with self._lock:
            return self._last_activity

    @property
    def relay_running(self) -> bool:
        """Whether the relay thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def touch(self) -> None:
        """Push the idle deadline back."""
        with self._lock:
            self._last_activity = self._clock()

    def idle_remaining(self) -> float:
        """Seconds left before the idle deadline; zero or less when it has passed."""
        return self.idle_timeout - (self._clock() - self.last_activity)

    def start(self) -> None:
        """Start the relay thread.

        Does nothing unless the session is still ``CREATED``.
        """
        with self._lock:
            if self._state is not SessionState.CREATED:
                return
            self._state = SessionState.ACTIVE
            self._thread = threading.Thread(
                target=self._run, name=f"session-{self.key}", daemon=True
            )
            self._thread.start()

    def submit(self, data: bytes) -> bool:
        """Queue a client datagram for the backend without blocking.

        Args:
            data: Datagram payload

        Returns:
            bool: False when the session has ended or its queue is full
        """
        if not self.is_alive:
            return False
        try:
            self._outbound.put_nowait(data)
        except queue.Full:
            logger.warning(f"Session {self.key} queue full, dropping {len(data)} bytes")
            return False
        self.touch()
        self._wakeup()
        return True

    def check_idle(self) -> bool:
        """Terminate the session if its idle deadline has passed.

        Returns:
            bool: True if this call terminated the session
        """
        if self.idle_remaining() > 0:
            return False
        return self.terminate("timed out due to inactivity")

    def terminate(self, reason: str = "terminated") -> bool:
        """End the session and remove it from the registry.

        Safe to call from any thread and more than once; only the first call has
        an effect.

        Args:
            reason: Short description for the log

        Returns:
            bool: True if this call performed the transition
        """
        with self._lock:
            if self._state is SessionState.TERMINATED:
                return False
            previous = self._state
            self._state = SessionState.TERMINATED

        self._registry.remove(self.key, self)
        if self._stats:
            self._stats.session_closed(self.key.protocol)
        logger.info(f"Session {self.key} closed: {reason}")

        if previous is SessionState.CREATED:
            # No relay thread will ever own the sockets
            self._close()
        else:
            self._wakeup()
        return True

    def _wakeup(self) -> None:
        # Full buffer means a wakeup is already pending; closed means the session ended
        with contextlib.suppress(OSError):
            self._wake_w.send(b"\0")

    def _run(self) -> None:
        """Relay loop, the only reader and writer of the backend socket."""
        selector = selectors.DefaultSelector()
        try:
            selector.register(self._sock, selectors.EVENT_READ)
            selector.register(self._wake_r, selectors.EVENT_READ)
            while self.is_alive:
                timeout = self.idle_remaining()
                if timeout <= 0:
                    if self.check_idle():
                        break
                    continue

                readable = {key.fileobj for key, _ in selector.select(timeout)}

                if self._wake_r in readable:
                    self._wake_r.recv(WAKEUP_READ_SIZE)
                if not self.is_alive:
                    break

                self._flush_outbound()
                if self._sock in readable:
                    self._relay_from_backend()
        except OSError as e:
            logger.warning(f"Session {self.key} socket error: {e}")
            self.terminate(f"socket error: {e}")
        except Exception as e:
            logger.exception(f"Session {self.key} relay failed")
            self.terminate(f"relay failed: {e}")
        finally:
            selector.close()
            self._close()

    def _flush_outbound(self) -> None:
        while True:
            try:
                data = self._outbound.get_nowait()
            except queue.Empty:
                return

            self._sock.send(data)
            self.touch()
            if self._stats:
                self._stats.datagram_forwarded(len(data))
            logger.debug(f"--> Sent {len(data)} bytes to {format_address(self.backend)} for {self.key}")

    def _relay_from_backend(self) -> None:
        data = self._sock.recv(self._buffer_size)
        self.touch()
        logger.debug(
            f"<-- Received {len(data)} bytes from {format_address(self.backend)}: {hex_preview(data)}"
        )

        self._client_sock.sendto(data, self.key.client)
        if self._stats:
            self._stats.datagram_relayed(len(data))
        logger.debug(f"<-- Forwarded {len(data)} bytes back to {format_address(self.key.client)}")

    def _close(self) -> None:
        for sock in (self._sock, self._wake_r, self._wake_w):
            with contextlib.suppress(OSError):
                sock.close()

    def __repr__(self) -> str:
        return f"<ForwardingSession {self.key} -> {format_address(self.backend)} {self.state.value}>"
