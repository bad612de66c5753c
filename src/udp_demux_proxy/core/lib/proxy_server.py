"""Demultiplexing proxy server.

This module wires the pieces of one proxy instance together:
- The listener owning the public UDP socket
- The registry of forwarding sessions
- The idle reaper sweeping that registry
- The statistics shared by all of them

Nothing here is a module-level singleton, so several proxies can run side by side
in one process (the test suite does exactly that).

Example:
    # Run a proxy with the default configuration until Ctrl-C
    create_proxy_server(ProxyConfig())
"""

import contextlib
import threading
import time

from loguru import logger
from rich.console import Console

from udp_demux_proxy.core.config import Address, ProxyConfig
from udp_demux_proxy.core.utils.utils import format_address

from .listener import Listener
from .proxy_stats import ProxyStats
from .proxy_ui import create_proxy_ui
from .reaper import IdleReaper
from .registry import ConnectionRegistry
from .session import Clock, ForwardingSession, SessionKey, SocketFactory, open_backend_socket

console = Console()

# Constants
THREAD_JOIN_TIMEOUT = 2.0  # Seconds


class DemuxProxy:
    """One proxy instance: listener, registry, reaper and stats."""

    def __init__(
        self,
        config: ProxyConfig,
        clock: Clock = time.monotonic,
        socket_factory: SocketFactory = open_backend_socket,
    ) -> None:
        """Build a proxy without binding anything yet.

        Args:
            config: Proxy configuration
            clock: Monotonic time source for idle deadlines
            socket_factory: Opens the connected socket of each new session
        """
        config.validate()
        self.config = config
        self.clock = clock
        self.socket_factory = socket_factory
        self.stats = ProxyStats()
        self.registry = ConnectionRegistry(self._create_session)
        self.listener = Listener(config, self.registry, self.stats)
        self.reaper = IdleReaper(self.registry, config.sweep_interval)
        self._thread: threading.Thread | None = None

    def _create_session(self, key: SessionKey, backend: Address) -> ForwardingSession:
        return ForwardingSession(
            key,
            backend,
            self.registry,
            self.listener.sock,
            idle_timeout=self.config.idle_timeout,
            buffer_size=self.config.buffer_size,
            queue_size=self.config.queue_size,
            clock=self.clock,
            socket_factory=self.socket_factory,
            stats=self.stats,
        )

    @property
    def address(self) -> Address:
        """Address the listener is bound to."""
        return self.listener.address

    def start(self) -> None:
        """Bind and serve from a background thread.

        Raises:
            ListenerBindError: If the listen address cannot be bound
        """
        self.listener.bind()
        self.reaper.start()
        self._thread = threading.Thread(target=self.listener.run, name="listener", daemon=True)
        self._thread.start()

    def serve_forever(self) -> None:
        """Bind and serve from the calling thread until :meth:`stop`.

        Raises:
            ListenerBindError: If the listen address cannot be bound
        """
        self.listener.bind()
        self.reaper.start()
        self.listener.run()

    def stop(self) -> None:
        """Stop receiving and terminate every session."""
        self.listener.stop()
        if self._thread is not None:
            self._thread.join(timeout=THREAD_JOIN_TIMEOUT)
            self._thread = None
        self.reaper.stop()
        closed = self.registry.close_all()
        logger.info(f"Proxy stopped, {closed} session(s) closed")

    def __enter__(self) -> "DemuxProxy":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()


def create_proxy_server(config: ProxyConfig, show_ui: bool = False) -> None:
    """Create a proxy and serve until interrupted.

    Args:
        config: Proxy configuration
        show_ui: Show the live statistics panel

    Raises:
        ListenerBindError: If the listen address cannot be bound
    """
    proxy = DemuxProxy(config)

    console.print(
        f"[bold green]Routing WireGuard to {format_address(config.wireguard_backend)}, "
        f"everything else to {format_address(config.quic_backend)}"
    )

    try:
        proxy.listener.bind()
        proxy.reaper.start()

        if show_ui:
            create_proxy_ui(proxy.address, proxy.stats).start()

        proxy.listener.run()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
        console.print("\n[yellow]Shutting down proxy server...")
    finally:
        with contextlib.suppress(Exception):
            proxy.stop()
