"""Core proxy implementation.

This package contains the core components of the demultiplexing proxy:
- Header-based protocol classification
- Configuration and address parsing
- Forwarding sessions and their registry
- The listener, idle reaper and statistics
- Exception handling

The command-line interface lives in a separate package and only talks to
the proxy through ``create_proxy_server`` and ``ProxyConfig``.
"""
