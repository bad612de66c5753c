from unittest import mock

from conftest import wait_for

from udp_demux_proxy.core.classifier import ProtocolTag
from udp_demux_proxy.core.lib import IdleReaper, SessionKey, SessionState

WG_KEY = SessionKey(("127.0.0.1", 5000), ProtocolTag.WIREGUARD)
QUIC_KEY = SessionKey(("127.0.0.1", 5001), ProtocolTag.QUIC)


def test_sweep_reaps_only_idle_sessions(registry, clock, wireguard_backend, quic_backend):
    reaper = IdleReaper(registry, interval=10)
    idle = registry.lookup_or_create(WG_KEY, wireguard_backend.address)
    clock.advance(20)
    busy = registry.lookup_or_create(QUIC_KEY, quic_backend.address)
    clock.advance(10)

    assert reaper.sweep() == 1
    assert WG_KEY not in registry
    assert QUIC_KEY in registry
    assert idle.state is SessionState.TERMINATED
    assert busy.state is SessionState.ACTIVE


def test_sweep_with_nothing_idle(registry, wireguard_backend):
    registry.lookup_or_create(WG_KEY, wireguard_backend.address)
    assert IdleReaper(registry, interval=10).sweep() == 0
    assert WG_KEY in registry


def test_sweep_reaps_session_whose_relay_died(registry, wireguard_backend):
    session = registry.lookup_or_create(WG_KEY, wireguard_backend.address)

    with mock.patch.object(type(session), "relay_running", new_callable=mock.PropertyMock, return_value=False):
        assert IdleReaper(registry, interval=10).sweep() == 1

    assert WG_KEY not in registry


def test_background_sweeps(registry, clock, wireguard_backend):
    reaper = IdleReaper(registry, interval=0.05)
    registry.lookup_or_create(WG_KEY, wireguard_backend.address)
    reaper.start()
    try:
        clock.advance(31)
        assert wait_for(lambda: WG_KEY not in registry)
    finally:
        reaper.stop()
