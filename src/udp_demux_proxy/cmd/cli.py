"""Command-line interface for the demultiplexing proxy.

This module provides the command-line interface, handling:
- Option parsing, with every proxy setting also readable from the environment
- Logging setup
- Proxy lifecycle and fatal startup errors
- A local echo backend for trying the proxy out
- Manual classification of a datagram

Example:
    # Run from command line:
    $ udp-demux-proxy proxy --listen 0.0.0.0:8080 --wireguard wireguard:51820
    $ udp-demux-proxy echo --listen 127.0.0.1:8443 --prefix quic:
    $ udp-demux-proxy classify 01000000deadbeef
"""

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from udp_demux_proxy import __version__
from udp_demux_proxy.core.classifier import classify, describe
from udp_demux_proxy.core.config import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_IDLE_TIMEOUT,
    DEFAULT_LISTEN,
    DEFAULT_QUEUE_SIZE,
    DEFAULT_QUIC_BACKEND,
    DEFAULT_SWEEP_INTERVAL,
    DEFAULT_WIREGUARD_BACKEND,
    ProxyConfig,
    parse_address,
)
from udp_demux_proxy.core.exceptions import ConfigError, ListenerBindError
from udp_demux_proxy.core.proxy import EchoBackend, create_proxy_server
from udp_demux_proxy.core.utils.log_config import configure_logging
from udp_demux_proxy.core.utils.utils import format_address, hex_preview

console = Console()
app = typer.Typer(help="UDP proxy splitting WireGuard and QUIC traffic arriving on one port")


@app.callback(invoke_without_command=True)
def version_callback():
    """Show version information."""
    console.print(f"[cyan]UDP Demux Proxy v{__version__}[/cyan]")


@app.command(name="proxy")
def start_proxy(
    listen: str = typer.Option(
        DEFAULT_LISTEN, "--listen", "-l", envvar="UDP_DEMUX_LISTEN", help="Address to listen on"
    ),
    wireguard: str = typer.Option(
        DEFAULT_WIREGUARD_BACKEND,
        "--wireguard",
        envvar="UDP_DEMUX_WIREGUARD",
        help="Backend for WireGuard datagrams",
    ),
    quic: str = typer.Option(
        DEFAULT_QUIC_BACKEND,
        "--quic",
        envvar="UDP_DEMUX_QUIC",
        help="Backend for all other datagrams",
    ),
    idle_timeout: float = typer.Option(
        DEFAULT_IDLE_TIMEOUT,
        "--idle-timeout",
        envvar="UDP_DEMUX_IDLE_TIMEOUT",
        help="Seconds of silence before a session is closed",
    ),
    buffer_size: int = typer.Option(
        DEFAULT_BUFFER_SIZE,
        "--buffer-size",
        envvar="UDP_DEMUX_BUFFER_SIZE",
        help="Receive buffer size in bytes",
    ),
    queue_size: int = typer.Option(
        DEFAULT_QUEUE_SIZE,
        "--queue-size",
        envvar="UDP_DEMUX_QUEUE_SIZE",
        help="Datagrams that may wait per session",
    ),
    sweep_interval: float = typer.Option(
        DEFAULT_SWEEP_INTERVAL,
        "--sweep-interval",
        envvar="UDP_DEMUX_SWEEP_INTERVAL",
        help="Seconds between idle session sweeps",
    ),
    ui: bool = typer.Option(default=False, help="Show live statistics"),
    debug: bool = typer.Option(
        default=False,
        help="Enable debug logging",
    ),
):
    """Start the demultiplexing proxy."""
    configure_logging(debug=debug)

    try:
        config = ProxyConfig.from_strings(
            listen=listen,
            wireguard_backend=wireguard,
            quic_backend=quic,
            idle_timeout=idle_timeout,
            buffer_size=buffer_size,
            queue_size=queue_size,
            sweep_interval=sweep_interval,
        )
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        console.print(f"[red]Invalid configuration: {escape(str(e))}")
        raise typer.Exit(1) from e

    logger.info(f"Starting proxy on {format_address(config.listen)}")

    try:
        create_proxy_server(config, show_ui=ui)
    except ListenerBindError as e:
        logger.error(str(e))
        console.print(f"[red]Error: {escape(str(e))}")
        raise typer.Exit(1) from e


@app.command(name="echo")
def start_echo(
    listen: str = typer.Option("127.0.0.1:8443", "--listen", "-l", help="Address to listen on"),
    prefix: str = typer.Option("", "--prefix", help="Text prepended to every reply"),
    debug: bool = typer.Option(default=False, help="Enable debug logging"),
):
    """Run a UDP echo server to stand in for a backend."""
    configure_logging(debug=debug, log_dir=None)

    try:
        host, port = parse_address(listen)
        backend = EchoBackend(host, port, prefix=prefix.encode())
    except (ConfigError, OSError) as e:
        console.print(f"[red]Error: {escape(str(e))}")
        raise typer.Exit(1) from e

    console.print(f"[green]Echo backend listening on {format_address(backend.address)}")
    try:
        backend.serve_forever()
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down echo backend...")
    finally:
        backend.stop()


@app.command(name="classify")
def classify_datagram(
    payload: str = typer.Argument(..., help="Datagram as hex, whitespace allowed"),
):
    """Show how the proxy would route a datagram."""
    try:
        data = bytes.fromhex(payload)
    except ValueError as e:
        console.print(f"[red]Invalid hex payload: {escape(str(e))}")
        raise typer.Exit(1) from e

    tag = classify(data)
    config = ProxyConfig()

    table = Table(title="Datagram Classification")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Length", str(len(data)))
    table.add_row("Header", hex_preview(data, limit=4) or "-")
    table.add_row("Protocol", str(tag))
    table.add_row("Message", describe(data))
    table.add_row("Default backend", format_address(config.backend_for(tag)))

    console.print(table)


if __name__ == "__main__":
    app()
