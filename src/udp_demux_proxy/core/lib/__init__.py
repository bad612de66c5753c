"""Core proxy library components."""

from .echo_backend import EchoBackend
from .listener import Listener
from .proxy_server import DemuxProxy, create_proxy_server
from .proxy_stats import ProxyStats
from .reaper import IdleReaper
from .registry import ConnectionRegistry
from .session import ForwardingSession, SessionKey, SessionState, open_backend_socket

__all__ = [
    "ConnectionRegistry",
    "create_proxy_server",
    "DemuxProxy",
    "EchoBackend",
    "ForwardingSession",
    "IdleReaper",
    "Listener",
    "open_backend_socket",
    "ProxyStats",
    "SessionKey",
    "SessionState",
]
