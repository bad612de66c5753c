"""Shared fixtures: echo backends, proxies on ephemeral ports and a manual clock."""

import socket
import threading
import time

import pytest

from udp_demux_proxy.core.config import ProxyConfig
from udp_demux_proxy.core.lib import (
    ConnectionRegistry,
    DemuxProxy,
    EchoBackend,
    ForwardingSession,
    open_backend_socket,
)

RECV_TIMEOUT = 2.0
BUFFER_SIZE = 65536


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingSocketFactory:
    """Opens real backend sockets and counts how often it was asked to."""

    def __init__(self) -> None:
        self.calls = 0
        self.sockets: list[socket.socket] = []
        self._lock = threading.Lock()

    def __call__(self, address):
        sock = open_backend_socket(address)
        with self._lock:
            self.calls += 1
            self.sockets.append(sock)
        return sock


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wireguard_backend():
    backend = EchoBackend(prefix=b"wg:").start()
    yield backend
    backend.stop()


@pytest.fixture
def quic_backend():
    backend = EchoBackend(prefix=b"quic:").start()
    yield backend
    backend.stop()


@pytest.fixture
def make_config(wireguard_backend, quic_backend):
    def _make(**overrides) -> ProxyConfig:
        values = {
            "listen": ("127.0.0.1", 0),
            "wireguard_backend": wireguard_backend.address,
            "quic_backend": quic_backend.address,
        }
        values.update(overrides)
        return ProxyConfig(**values)

    return _make


@pytest.fixture
def make_proxy(make_config):
    proxies: list[DemuxProxy] = []

    def _make(**overrides) -> DemuxProxy:
        proxy = DemuxProxy(make_config(**overrides))
        proxy.start()
        proxies.append(proxy)
        return proxy

    yield _make
    for proxy in proxies:
        proxy.stop()


@pytest.fixture
def proxy(make_proxy):
    return make_proxy()


@pytest.fixture
def make_client():
    clients: list[socket.socket] = []

    def _make() -> socket.socket:
        client = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        client.bind(("127.0.0.1", 0))
        client.settimeout(RECV_TIMEOUT)
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def socket_factory():
    return CountingSocketFactory()


@pytest.fixture
def client_sock():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    yield sock
    sock.close()


@pytest.fixture
def registry(client_sock, clock, socket_factory):
    """Registry building sessions with a manual clock and a counting socket factory."""
    holder: dict[str, ConnectionRegistry] = {}

    def factory(key, backend):
        return ForwardingSession(
            key,
            backend,
            holder["registry"],
            client_sock,
            idle_timeout=30.0,
            queue_size=4,
            clock=clock,
            socket_factory=socket_factory,
        )

    registry = ConnectionRegistry(factory)
    holder["registry"] = registry
    yield registry
    registry.close_all()
