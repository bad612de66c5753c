import threading
from unittest import mock

import pytest

from udp_demux_proxy.core.classifier import ProtocolTag
from udp_demux_proxy.core.exceptions import SessionError
from udp_demux_proxy.core.lib import ConnectionRegistry, ForwardingSession, SessionKey, SessionState

CLIENT = ("127.0.0.1", 5000)
WG_KEY = SessionKey(CLIENT, ProtocolTag.WIREGUARD)
QUIC_KEY = SessionKey(CLIENT, ProtocolTag.QUIC)


def test_creates_and_reuses_session(registry, socket_factory, wireguard_backend):
    first = registry.lookup_or_create(WG_KEY, wireguard_backend.address)
    second = registry.lookup_or_create(WG_KEY, wireguard_backend.address)

    assert first is second
    assert first.state is SessionState.ACTIVE
    assert socket_factory.calls == 1
    assert len(registry) == 1


def test_lookup_bumps_activity(registry, clock, wireguard_backend):
    session = registry.lookup_or_create(WG_KEY, wireguard_backend.address)
    clock.advance(20)
    registry.lookup_or_create(WG_KEY, wireguard_backend.address)

    assert session.last_activity == clock.now


def test_protocols_get_separate_sessions(registry, socket_factory, wireguard_backend, quic_backend):
    wg = registry.lookup_or_create(WG_KEY, wireguard_backend.address)
    quic = registry.lookup_or_create(QUIC_KEY, quic_backend.address)

    assert wg is not quic
    assert socket_factory.calls == 2
    assert socket_factory.sockets[0] is not socket_factory.sockets[1]


def test_concurrent_lookups_create_one_session(registry, socket_factory, wireguard_backend):
    workers = 16
    barrier = threading.Barrier(workers)
    results = []
    results_lock = threading.Lock()

    def lookup():
        barrier.wait()
        session = registry.lookup_or_create(WG_KEY, wireguard_backend.address)
        with results_lock:
            results.append(session)

    threads = [threading.Thread(target=lookup) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert len(results) == workers
    assert all(session is results[0] for session in results)
    assert socket_factory.calls == 1


def test_remove_checks_identity(registry, wireguard_backend):
    session = registry.lookup_or_create(WG_KEY, wireguard_backend.address)
    other = registry.lookup_or_create(QUIC_KEY, wireguard_backend.address)

    assert registry.remove(WG_KEY, other) is False
    assert WG_KEY in registry
    assert registry.remove(WG_KEY, session) is True
    assert registry.remove(WG_KEY, session) is False
    assert WG_KEY not in registry


def test_ended_session_is_replaced_and_cannot_evict_replacement(registry, wireguard_backend):
    stale = registry.lookup_or_create(WG_KEY, wireguard_backend.address)
    # End the session without letting it deregister, as if it lost the race
    with mock.patch.object(registry, "remove", return_value=False):
        stale.terminate("test")
    assert registry.get(WG_KEY) is stale

    fresh = registry.lookup_or_create(WG_KEY, wireguard_backend.address)

    assert fresh is not stale
    assert registry.remove(WG_KEY, stale) is False
    assert registry.get(WG_KEY) is fresh


def test_terminated_session_deregisters(registry, wireguard_backend):
    session = registry.lookup_or_create(WG_KEY, wireguard_backend.address)
    assert session.terminate("test") is True
    assert WG_KEY not in registry


def test_factory_failure_leaves_registry_unchanged(wireguard_backend):
    def failing_factory(key, backend):
        raise SessionError("backend unreachable")

    registry = ConnectionRegistry(failing_factory)
    with pytest.raises(SessionError):
        registry.lookup_or_create(WG_KEY, wireguard_backend.address)
    assert len(registry) == 0


def test_close_all(registry, wireguard_backend, quic_backend):
    wg = registry.lookup_or_create(WG_KEY, wireguard_backend.address)
    quic = registry.lookup_or_create(QUIC_KEY, quic_backend.address)

    assert registry.close_all() == 2
    assert len(registry) == 0
    assert not wg.is_alive
    assert not quic.is_alive


def test_slow_session_setup_does_not_block_registry(clock, socket_factory, client_sock, wireguard_backend):
    setup_started = threading.Event()
    release_setup = threading.Event()

    def slow_factory(key, backend):
        if key == WG_KEY:
            setup_started.set()
            release_setup.wait(5)
        return ForwardingSession(
            key, backend, registry, client_sock, clock=clock, socket_factory=socket_factory
        )

    registry = ConnectionRegistry(slow_factory)
    created = []
    creator = threading.Thread(
        target=lambda: created.append(registry.lookup_or_create(WG_KEY, wireguard_backend.address))
    )
    creator.start()
    try:
        assert setup_started.wait(2)

        other_done = threading.Event()

        def use_registry():
            registry.snapshot()
            registry.remove(QUIC_KEY, None)
            registry.lookup_or_create(QUIC_KEY, wireguard_backend.address)
            other_done.set()

        threading.Thread(target=use_registry, daemon=True).start()
        assert other_done.wait(2)
        assert QUIC_KEY in registry
        assert WG_KEY not in registry
    finally:
        release_setup.set()
        creator.join(5)

    assert created[0] is registry.get(WG_KEY)
    assert socket_factory.calls == 2
    registry.close_all()


def test_failed_setup_lets_next_datagram_retry(clock, socket_factory, client_sock, wireguard_backend):
    attempts = []

    def flaky_factory(key, backend):
        attempts.append(key)
        if len(attempts) == 1:
            raise SessionError("backend unreachable")
        return ForwardingSession(
            key, backend, registry, client_sock, clock=clock, socket_factory=socket_factory
        )

    registry = ConnectionRegistry(flaky_factory)
    with pytest.raises(SessionError):
        registry.lookup_or_create(WG_KEY, wireguard_backend.address)

    session = registry.lookup_or_create(WG_KEY, wireguard_backend.address)

    assert session.state is SessionState.ACTIVE
    assert len(attempts) == 2
    assert registry._creating == {}
    registry.close_all()
