"""Minimal UDP echo server standing in for a real backend.

Every datagram is sent back to its sender, optionally with a prefix so that two
echo backends behind one proxy can be told apart.
"""

import contextlib
import socket
import threading

from loguru import logger

from udp_demux_proxy.core.utils.utils import format_address

BUFFER_SIZE = 65536
POLL_INTERVAL = 0.2  # Seconds


class EchoBackend:
    """UDP echo server running in a daemon thread."""

    def __init__(self, host: str = "127.0.0.1", port: int = 0, prefix: bytes = b"") -> None:
        self.prefix = prefix
        self.peers: set[tuple] = set()
        self.running = False
        self.sock = socket.socket(socket.AF_INET6 if ":" in host else socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind((host, port))
        self.sock.settimeout(POLL_INTERVAL)
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int]:
        host, port = self.sock.getsockname()[:2]
        return host, port

    def serve_forever(self) -> None:
        self.running = True
        self._serve()

    def _serve(self) -> None:
        logger.info(f"Echo backend listening on {format_address(self.address)}")
        while self.running:
            try:
                data, addr = self.sock.recvfrom(BUFFER_SIZE)
            except TimeoutError:
                continue
            except OSError as e:
                if not self.running:
                    break
                logger.warning(f"Echo backend receive error: {e}")
                continue

            self.peers.add(addr)
            try:
                self.sock.sendto(self.prefix + data, addr)
            except OSError as e:
                logger.warning(f"Echo backend could not reply to {format_address(addr)}: {e}")
                continue
            logger.debug(f"Echoed {len(data)} bytes to {format_address(addr)}")

    def start(self) -> "EchoBackend":
        self.running = True
        self._thread = threading.Thread(target=self._serve, name="echo-backend", daemon=True)
        self._thread.start()
        return self

    def stop(self) -> None:
        self.running = False
        if self._thread is not None:
            self._thread.join(timeout=POLL_INTERVAL * 5)
            self._thread = None
        with contextlib.suppress(OSError):
            self.sock.close()
