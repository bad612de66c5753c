"""Client-facing socket and datagram dispatch.

The listener is the only reader of the public UDP socket. For every datagram it:
- classifies the header bytes
- looks up or creates the session for (client address, protocol)
- hands the datagram to that session's queue and moves on

It never waits for a backend. Receive errors and failures to open a session are
logged and cost at most the one datagram; only failing to bind at startup is fatal.
"""

import socket
import threading

from loguru import logger

from udp_demux_proxy.core.classifier import classify, describe
from udp_demux_proxy.core.config import Address, ProxyConfig
from udp_demux_proxy.core.exceptions import ListenerBindError, SessionError
from udp_demux_proxy.core.utils.utils import format_address, hex_preview

from .proxy_stats import ProxyStats
from .registry import ConnectionRegistry
from .session import SessionKey

POLL_INTERVAL = 0.5  # Seconds between checks of the running flag


class Listener:
    """Receives client datagrams and routes them to sessions."""

    def __init__(
        self,
        config: ProxyConfig,
        registry: ConnectionRegistry,
        stats: ProxyStats | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.stats = stats
        self.running = False
        self._sock: socket.socket | None = None
        self._stopped = threading.Event()

    @property
    def sock(self) -> socket.socket:
        """The bound client-facing socket."""
        if self._sock is None:
            raise RuntimeError("Listener is not bound")
        return self._sock

    @property
    def address(self) -> Address:
        return self.sock.getsockname()

    def bind(self) -> None:
        """Bind the client-facing socket.

        Raises:
            ListenerBindError: If the address cannot be resolved or bound
        """
        host, port = self.config.listen
        try:
            family, sock_type, proto, _, sockaddr = socket.getaddrinfo(
                host, port, type=socket.SOCK_DGRAM, flags=socket.AI_PASSIVE
            )[0]
            sock = socket.socket(family, sock_type, proto)
        except OSError as e:
            raise ListenerBindError(f"Cannot resolve {format_address(self.config.listen)}: {e}") from e

        try:
            sock.bind(sockaddr)
        except OSError as e:
            sock.close()
            raise ListenerBindError(f"Cannot bind {format_address(self.config.listen)}: {e}") from e

        sock.settimeout(POLL_INTERVAL)
        self._sock = sock
        logger.info(f"Listening on {format_address(self.address)}...")

    def run(self) -> None:
        """Receive and dispatch datagrams until :meth:`stop` is called."""
        sock = self.sock
        self.running = True
        self._stopped.clear()
        try:
            while self.running:
                try:
                    data, addr = sock.recvfrom(self.config.buffer_size)
                except TimeoutError:
                    continue
                except OSError as e:
                    if not self.running or sock.fileno() == -1:
                        break
                    logger.warning(f"Error receiving datagram: {e}")
                    continue

                self.dispatch(data, addr)
        finally:
            self._stopped.set()

    def dispatch(self, data: bytes, addr: Address) -> bool:
        """Route one client datagram to its session.

        Args:
            data: Datagram payload
            addr: Client address it came from

        Returns:
            bool: True if the datagram was queued for a backend
        """
        tag = classify(data)
        logger.debug(
            f"{len(data)} bytes received from {format_address(addr)} "
            f"({tag}: {describe(data)}): {hex_preview(data)}"
        )

        key = SessionKey(addr, tag)
        try:
            session = self.registry.lookup_or_create(key, self.config.backend_for(tag))
            queued = session.submit(data)
            if not queued and not session.is_alive:
                # The session ended between lookup and submit; one retry gets a fresh one
                session = self.registry.lookup_or_create(key, self.config.backend_for(tag))
                queued = session.submit(data)
        except (SessionError, OSError) as e:
            logger.warning(f"Dropping datagram from {format_address(addr)}: {e}")
            queued = False

        if not queued and self.stats:
            self.stats.datagram_dropped()
        return queued

    def stop(self, timeout: float = POLL_INTERVAL * 4) -> None:
        """Stop the receive loop and close the socket."""
        was_running = self.running
        self.running = False
        if was_running:
            self._stopped.wait(timeout)
        if self._sock is not None:
            self._sock.close()
            logger.info("Listener closed")
