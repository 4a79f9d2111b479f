from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import Callable

import pytest

from errsim.simulator import ErrorSimulator


def recv_all(sock: socket.socket, window_s: float = 0.5) -> list[tuple[bytes, tuple[str, int]]]:
    """Collect every datagram that arrives before the socket stays quiet for ``window_s``."""
    got = []
    old = sock.gettimeout()
    sock.settimeout(window_s)
    try:
        while True:
            try:
                got.append(sock.recvfrom(2048))
            except socket.timeout:
                return got
    finally:
        sock.settimeout(old)


@pytest.fixture
def udp() -> Callable[[], socket.socket]:
    socks: list[socket.socket] = []

    def make() -> socket.socket:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.bind(("127.0.0.1", 0))
        s.settimeout(2.0)
        socks.append(s)
        return s

    yield make
    for s in socks:
        s.close()


@dataclass
class Harness:
    sim: ErrorSimulator
    client: socket.socket
    server: socket.socket
    fatal: list

    @property
    def known_addr(self) -> tuple[str, int]:
        return "127.0.0.1", self.sim.client_port

    @property
    def tid_addr(self) -> tuple[str, int]:
        return "127.0.0.1", self.sim.client.tid_port


@pytest.fixture
def relay(udp) -> Harness:
    fatal: list = []
    server = udp()
    sim = ErrorSimulator(
        0,
        "127.0.0.1",
        server.getsockname()[1],
        listen_host="127.0.0.1",
        on_fatal=fatal.append,
    )
    sim.start()
    h = Harness(sim, udp(), server, fatal)
    yield h
    sim.close()
    assert fatal == []
