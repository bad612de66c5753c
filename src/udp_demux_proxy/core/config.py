"""Proxy configuration.

A single frozen ``ProxyConfig`` carries every tunable of a proxy instance. The CLI
builds one from its options (each of which can also come from the environment),
tests build their own with ephemeral ports and short timeouts.
"""

from dataclasses import dataclass
from typing import Final

from udp_demux_proxy.core.classifier import ProtocolTag
from udp_demux_proxy.core.exceptions import ConfigError

# Type aliases
Address = tuple[str, int]

# Defaults
DEFAULT_LISTEN: Final = "0.0.0.0:8080"
DEFAULT_WIREGUARD_BACKEND: Final = "wireguard:51820"
DEFAULT_QUIC_BACKEND: Final = "http3-server:8443"
DEFAULT_IDLE_TIMEOUT: Final = 30.0  # Seconds
DEFAULT_BUFFER_SIZE: Final = 65536  # Bytes
DEFAULT_QUEUE_SIZE: Final = 100  # Datagrams waiting per session
DEFAULT_SWEEP_INTERVAL: Final = 10.0  # Seconds

MAX_DATAGRAM_SIZE: Final = 65536
MAX_PORT: Final = 65535


def parse_address(value: str) -> Address:
    """Parse ``host:port`` into an address tuple.

    IPv6 hosts must be bracketed, e.g. ``[::1]:8080``.

    Args:
        value: Address string

    Returns:
        Address: ``(host, port)`` tuple

    Raises:
        ConfigError: If the string is not a valid address
    """
    text = value.strip()
    if text.startswith("["):
        host, sep, port_text = text[1:].partition("]:")
        if not sep:
            raise ConfigError(f"Invalid IPv6 address {value!r}, expected [host]:port")
    else:
        host, sep, port_text = text.rpartition(":")
        if not sep:
            raise ConfigError(f"Missing port in address {value!r}")
        if ":" in host:
            raise ConfigError(f"IPv6 address {value!r} must be written as [host]:port")

    if not host:
        raise ConfigError(f"Missing host in address {value!r}")

    try:
        port = int(port_text)
    except ValueError as e:
        raise ConfigError(f"Invalid port in address {value!r}") from e

    if not 0 <= port <= MAX_PORT:
        raise ConfigError(f"Port out of range in address {value!r}")

    return host, port


@dataclass(frozen=True)
class ProxyConfig:
    """Runtime configuration of one proxy instance."""

    # Network Configuration
    listen: Address = parse_address(DEFAULT_LISTEN)
    wireguard_backend: Address = parse_address(DEFAULT_WIREGUARD_BACKEND)
    quic_backend: Address = parse_address(DEFAULT_QUIC_BACKEND)

    # Session Configuration
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    buffer_size: int = DEFAULT_BUFFER_SIZE
    queue_size: int = DEFAULT_QUEUE_SIZE

    # Reaper Configuration
    sweep_interval: float = DEFAULT_SWEEP_INTERVAL

    @classmethod
    def from_strings(
        cls,
        listen: str = DEFAULT_LISTEN,
        wireguard_backend: str = DEFAULT_WIREGUARD_BACKEND,
        quic_backend: str = DEFAULT_QUIC_BACKEND,
        **kwargs,
    ) -> "ProxyConfig":
        """Build a validated config from ``host:port`` strings."""
        config = cls(
            listen=parse_address(listen),
            wireguard_backend=parse_address(wireguard_backend),
            quic_backend=parse_address(quic_backend),
            **kwargs,
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Reject values the proxy cannot run with.

        Raises:
            ConfigError: If any value is out of range
        """
        if self.idle_timeout <= 0:
            raise ConfigError(f"Idle timeout must be positive, got {self.idle_timeout}")
        if self.sweep_interval <= 0:
            raise ConfigError(f"Sweep interval must be positive, got {self.sweep_interval}")
        if self.queue_size <= 0:
            raise ConfigError(f"Queue size must be positive, got {self.queue_size}")
        if not 1 <= self.buffer_size <= MAX_DATAGRAM_SIZE:
            raise ConfigError(
                f"Buffer size must be between 1 and {MAX_DATAGRAM_SIZE}, got {self.buffer_size}"
            )

    def backend_for(self, tag: ProtocolTag) -> Address:
        """Get the backend address that serves ``tag``."""
        if tag is ProtocolTag.WIREGUARD:
            return self.wireguard_backend
        return self.quic_backend
