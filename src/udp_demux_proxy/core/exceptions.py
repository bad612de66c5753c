"""Custom exceptions for the demultiplexing proxy.

These exceptions separate the three kinds of failure the proxy distinguishes:
- Bad configuration, rejected before anything is bound
- Failure to bind the client-facing socket, which is fatal
- Failure to open a backend socket, which only costs the one datagram

Example:
    try:
        session = registry.lookup_or_create(key, backend)
    except SessionError as e:
        logger.warning(f"Dropping datagram: {e}")
"""


class ProxyError(Exception):
    """Base exception for proxy errors."""


class ConfigError(ProxyError):
    """Raised when a configuration value is invalid."""


class ListenerBindError(ProxyError):
    """Raised when the client-facing socket cannot be bound."""


class SessionError(ProxyError):
    """Raised when a forwarding session cannot open its backend socket."""
