"""Utility functions and helpers."""

from udp_demux_proxy.core.utils.utils import format_address, format_bytes, hex_preview

__all__ = ["format_address", "format_bytes", "hex_preview"]
