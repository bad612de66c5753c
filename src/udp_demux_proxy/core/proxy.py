"""Main entry point for the demultiplexing proxy.

Exposes only what callers need to run a proxy, hiding the listener, registry,
session and reaper wiring behind it.

Example:
    from udp_demux_proxy.core.config import ProxyConfig
    from udp_demux_proxy.core.proxy import create_proxy_server

    # Serve on 0.0.0.0:8080 with the default backends
    create_proxy_server(ProxyConfig())

Attributes:
    __all__ (list): List of public components exposed by this module
"""

from .lib import DemuxProxy, EchoBackend, create_proxy_server

__all__ = ["create_proxy_server", "DemuxProxy", "EchoBackend"]
