"""Live terminal panel for the proxy.

Runs in a daemon thread next to the listener and redraws a Rich panel with:
- The listen address
- Current bandwidth
- Active sessions per protocol
- Datagram totals and drops

Example:
    ui_thread = create_proxy_ui(proxy.address, proxy.stats)
    ui_thread.start()
"""

import threading
import time

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.spinner import Spinner
from rich.table import Table
from rich.text import Text

from udp_demux_proxy.core.classifier import ProtocolTag
from udp_demux_proxy.core.utils.utils import format_address, format_bytes

from .proxy_stats import ProxyStats

console = Console()

BANDWIDTH_THRESHOLD = 100  # bytes


class ProxyUI:
    """Statistics panel for one proxy instance."""

    def __init__(self, address: tuple, stats: ProxyStats) -> None:
        self.address = address
        self.stats = stats
        self.running = True
        self._last_bandwidth = 0.0
        self._start_time = time.monotonic()
        self._refresh_rate = 0.5
        self._spinner = Spinner("dots", text="")

    def _generate_table(self) -> Table:
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Property", style="cyan", no_wrap=True)
        table.add_column("Value", style="green", no_wrap=True)

        bandwidth = self.stats.get_bandwidth()
        # Only update bandwidth if it changed significantly (avoid jitter)
        if abs(bandwidth - self._last_bandwidth) > BANDWIDTH_THRESHOLD:
            self._last_bandwidth = bandwidth

        spinner_text = self._spinner.render(time.monotonic() - self._start_time)
        table.add_row("Bandwidth", f"{spinner_text} {format_bytes(self._last_bandwidth)}/s")
        for tag in ProtocolTag:
            table.add_row(f"Active {tag} sessions", str(self.stats.active_sessions[tag]))
        table.add_row("Sessions created", str(self.stats.sessions_created))
        table.add_row(
            "To backends",
            f"{self.stats.datagrams_forwarded} datagrams, {format_bytes(self.stats.bytes_forwarded)}",
        )
        table.add_row(
            "To clients",
            f"{self.stats.datagrams_relayed} datagrams, {format_bytes(self.stats.bytes_relayed)}",
        )
        table.add_row("Dropped", str(self.stats.datagrams_dropped))
        return table

    def _generate_display(self) -> Panel:
        title = Text(f"UDP Demux Proxy: {format_address(self.address)}", style="bold cyan")
        return Panel(
            self._generate_table(),
            title=title,
            subtitle="Press Ctrl+C to exit",
            border_style="blue",
            padding=(1, 2),
        )

    def run(self) -> None:
        """Redraw the panel until stopped."""
        try:
            with Live(
                self._generate_display(),
                console=console,
                refresh_per_second=4,
                transient=False,
                auto_refresh=False,
            ) as live:
                while self.running:
                    live.update(self._generate_display(), refresh=True)
                    time.sleep(self._refresh_rate)
        except KeyboardInterrupt:
            self.running = False


def create_proxy_ui(address: tuple, stats: ProxyStats) -> threading.Thread:
    """Create and return UI thread."""
    ui = ProxyUI(address, stats)
    return threading.Thread(target=ui.run, name="proxy-ui", daemon=True)
