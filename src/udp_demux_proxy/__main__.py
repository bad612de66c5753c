"""Allow ``python -m udp_demux_proxy``."""

from udp_demux_proxy.cmd.cli import app

app()
