import pytest

from udp_demux_proxy.core.classifier import ProtocolTag
from udp_demux_proxy.core.config import ProxyConfig, parse_address
from udp_demux_proxy.core.exceptions import ConfigError


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("0.0.0.0:8080", ("0.0.0.0", 8080)),
        ("wireguard:51820", ("wireguard", 51820)),
        ("[::1]:8443", ("::1", 8443)),
        (" localhost:0 ", ("localhost", 0)),
    ],
)
def test_parse_address(text, expected):
    assert parse_address(text) == expected


@pytest.mark.parametrize(
    "text", ["8080", ":8080", "host:", "host:port", "host:70000", "::1:8080", "[::1]8080"]
)
def test_parse_address_rejects(text):
    with pytest.raises(ConfigError):
        parse_address(text)


def test_defaults():
    config = ProxyConfig()
    assert config.listen == ("0.0.0.0", 8080)
    assert config.wireguard_backend == ("wireguard", 51820)
    assert config.quic_backend == ("http3-server", 8443)
    assert config.idle_timeout == 30.0
    assert config.buffer_size == 65536
    config.validate()


def test_backend_for():
    config = ProxyConfig.from_strings(
        wireguard_backend="10.0.0.1:51820", quic_backend="10.0.0.2:443"
    )
    assert config.backend_for(ProtocolTag.WIREGUARD) == ("10.0.0.1", 51820)
    assert config.backend_for(ProtocolTag.QUIC) == ("10.0.0.2", 443)


@pytest.mark.parametrize(
    "overrides",
    [
        {"idle_timeout": 0},
        {"sweep_interval": -1},
        {"queue_size": 0},
        {"buffer_size": 0},
        {"buffer_size": 65537},
    ],
)
def test_validate_rejects(overrides):
    with pytest.raises(ConfigError):
        ProxyConfig.from_strings(**overrides)
