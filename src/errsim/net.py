from __future__ import annotations

import contextlib
import socket
import threading
from typing import Optional, Tuple

from .constants import MAX_DATAGRAM, RECV_POLL_MS

Address = Tuple[str, int]


class SetupError(Exception):
    """An endpoint could not be bound or an address could not be resolved."""


def resolve_host(host: str) -> str:
    try:
        return socket.gethostbyname(host)
    except OSError as e:
        raise SetupError(f"cannot resolve {host!r}: {e}") from e


class UdpEndpoint:
    def __init__(self, sock: socket.socket, poll_ms: int = RECV_POLL_MS):
        self.sock = sock
        self._closing = threading.Event()
        if poll_ms > 0:
            self.sock.settimeout(poll_ms / 1000.0)

    @classmethod
    def bound(cls, host: str, port: int, poll_ms: int = RECV_POLL_MS) -> "UdpEndpoint":
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((host, port))
        except (OSError, OverflowError) as e:
            sock.close()
            raise SetupError(f"cannot bind {host}:{port}: {e}") from e
        return cls(sock, poll_ms)

    @classmethod
    def ephemeral(cls, poll_ms: int = RECV_POLL_MS) -> "UdpEndpoint":
        return cls.bound("0.0.0.0", 0, poll_ms)

    @property
    def port(self) -> int:
        return self.sock.getsockname()[1]

    @property
    def closing(self) -> bool:
        return self._closing.is_set()

    def recvfrom(self, bufsize: int = MAX_DATAGRAM) -> Optional[Tuple[bytes, Address]]:
        """Block until a datagram arrives. Returns None once the endpoint is closed."""
        while not self.closing:
            try:
                data, addr = self.sock.recvfrom(bufsize)
            except socket.timeout:
                continue
            except OSError:
                if self.closing:
                    return None
                raise
            if self.closing:
                return None
            return data, addr
        return None

    def sendto(self, data: bytes, addr: Address) -> None:
        try:
            self.sock.sendto(data, addr)
        except OSError:
            # racing a shutdown that already started
            if self.closing:
                return
            raise

    def close(self) -> None:
        if self.closing:
            return
        self._closing.set()
        # wakes a reader blocked in recvfrom on Linux; unconnected UDP reports ENOTCONN
        with contextlib.suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)
        self.sock.close()


class PeerState:
    """Last-known address of the peer on one relay side. Last writer wins."""

    def __init__(self, host: Optional[str] = None, port: Optional[int] = None):
        self._lock = threading.Lock()
        self._host = host
        self._port = port

    def update(self, host: str, port: int) -> None:
        with self._lock:
            self._host = host
            self._port = port

    def set_port(self, port: Optional[int]) -> None:
        with self._lock:
            self._port = port

    def snapshot(self) -> Tuple[Optional[str], Optional[int]]:
        with self._lock:
            return self._host, self._port
