"""The two halves of the relay.

The client listener faces the TFTP client and the server relay faces the TFTP
server. Each side owns its sockets, receive loops, peer state and delivery
scheduler; inbound traffic on one side is handed to the other side's send path,
which consults the fault store before anything goes on the wire.
"""

from __future__ import annotations

import enum
import logging
import os
import threading
from typing import Callable, Optional

from .constants import DEFAULT_LISTEN_HOST
from .faults import FaultInstruction, FaultKind, FaultStore
from .net import Address, PeerState, UdpEndpoint
from .packet import PacketKind, opcode_of, parse
from .scheduler import DeliveryScheduler

logger = logging.getLogger(__name__)

Forward = Callable[[bytes], None]
FatalHandler = Callable[[BaseException], None]

REQUEST_KINDS = frozenset({PacketKind.RRQ, PacketKind.WRQ})


def abort(exc: BaseException) -> None:
    """Default fatal handler: log the cause and terminate the whole process."""
    logger.critical("unrecoverable socket failure: %s", exc, exc_info=exc)
    logging.shutdown()
    os._exit(1)


class SideState(enum.Enum):
    CREATED = "created"
    LISTENING = "listening"
    CLOSING = "closing"
    CLOSED = "closed"


class RelaySide:
    label = "peer"
    # what _destination lacks when it returns None
    unknown_peer = "peer address"

    def __init__(
        self,
        store: FaultStore,
        *,
        verbose: bool = False,
        on_fatal: Optional[FatalHandler] = None,
    ):
        self.store = store
        self.verbose = verbose
        self.state = SideState.CREATED
        self.peer = PeerState()
        self.forward_to: Optional[Forward] = None
        self._on_fatal = on_fatal or abort
        self._lock = threading.RLock()
        self._scheduler = DeliveryScheduler(self._deliver, name=f"{self.label}-scheduler")

    def relay(self, raw: bytes) -> Optional[FaultInstruction]:
        """Apply the first matching fault to an outbound packet and schedule what survives."""
        ei = self.store.match(raw)
        if ei is None:
            self._scheduler.schedule(raw, 0)
            return None

        logger.info("applying fault before sending packet to %s: %s", self.label, ei)
        if ei.fault is FaultKind.DUPLICATE:
            self._scheduler.schedule(raw, 0)
            self._scheduler.schedule(raw, ei.timing_ms)
        elif ei.fault is FaultKind.DELAY:
            self._scheduler.schedule(raw, ei.timing_ms)
        return ei

    def _trace(self, action: str, raw: bytes, addr: Address) -> None:
        level = logging.INFO if self.verbose else logging.DEBUG
        if logger.isEnabledFor(level):
            logger.log(
                level,
                "%s %s %s:%s length=%d %s",
                action,
                self.label,
                addr[0],
                addr[1],
                len(raw),
                parse(raw).describe(),
            )

    def _spawn(self, endpoint: UdpEndpoint, name: str) -> threading.Thread:
        t = threading.Thread(target=self._receive_loop, args=(endpoint,), name=name, daemon=True)
        t.start()
        return t

    def _receive_loop(self, endpoint: UdpEndpoint) -> None:
        while True:
            try:
                received = endpoint.recvfrom()
            except OSError as e:
                self._on_fatal(e)
                return
            if received is None:
                return
            data, addr = received
            self._trace("received from", data, addr)
            self._on_receive(data, addr)
            if self.forward_to is None:
                logger.warning("no route for packet from %s; discarding", self.label)
                continue
            self.forward_to(data)

    def _deliver(self, raw: bytes) -> None:
        with self._lock:
            endpoint = self._send_endpoint()
            dest = self._destination(raw)
        if dest is None:
            logger.warning("no known %s yet; discarding %d bytes", self.unknown_peer, len(raw))
            return
        self._trace("sending to", raw, dest)
        try:
            endpoint.sendto(raw, dest)
        except OSError as e:
            self._on_fatal(e)

    def _on_receive(self, data: bytes, addr: Address) -> None:
        raise NotImplementedError

    def _send_endpoint(self) -> UdpEndpoint:
        raise NotImplementedError

    def _destination(self, raw: bytes) -> Optional[Address]:
        raise NotImplementedError

    def _close_endpoints(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        with self._lock:
            if self.state in (SideState.CLOSING, SideState.CLOSED):
                return
            self.state = SideState.CLOSING
            self._close_endpoints()
        self._scheduler.close()
        self.state = SideState.CLOSED


class ClientListener(RelaySide):
    """Faces the client: a well-known port for new requests and a TID port for transfers."""

    label = "client"
    unknown_peer = "client address"

    def __init__(
        self,
        store: FaultStore,
        port: int,
        *,
        host: str = DEFAULT_LISTEN_HOST,
        verbose: bool = False,
        on_fatal: Optional[FatalHandler] = None,
    ):
        self.host = host
        self._known = UdpEndpoint.bound(host, port)
        try:
            self._tid = UdpEndpoint.ephemeral()
        except Exception:
            self._known.close()
            raise
        self._known_loop: Optional[threading.Thread] = None
        self._tid_loop: Optional[threading.Thread] = None
        super().__init__(store, verbose=verbose, on_fatal=on_fatal)

    @property
    def known_port(self) -> int:
        return self._known.port

    @property
    def tid_port(self) -> int:
        return self._tid.port

    def start(self) -> None:
        with self._lock:
            self._known_loop = self._spawn(self._known, "client-known")
            self._tid_loop = self._spawn(self._tid, "client-tid")
            self.state = SideState.LISTENING

    def send_to_client(self, raw: bytes) -> Optional[FaultInstruction]:
        return self.relay(raw)

    def set_known_port(self, port: int) -> None:
        """Rebind the well-known port. The TID endpoint and active transfers are untouched."""
        with self._lock:
            self._known.close()
            if self._known_loop is not None:
                self._known_loop.join()
            self._known = UdpEndpoint.bound(self.host, port)
            if self.state is SideState.LISTENING:
                self._known_loop = self._spawn(self._known, "client-known")
        logger.info("listening for client requests on port %d", port)

    def _on_receive(self, data: bytes, addr: Address) -> None:
        self.peer.update(addr[0], addr[1])

    def _send_endpoint(self) -> UdpEndpoint:
        return self._tid

    def _destination(self, raw: bytes) -> Optional[Address]:
        host, port = self.peer.snapshot()
        if host is None or port is None:
            return None
        return host, port

    def _close_endpoints(self) -> None:
        self._known.close()
        self._tid.close()
        for t in (self._known_loop, self._tid_loop):
            if t is not None:
                t.join()


class ServerRelay(RelaySide):
    """Faces the server: one ephemeral endpoint plus the server TID learned from replies."""

    label = "server"
    unknown_peer = "server TID"

    def __init__(
        self,
        store: FaultStore,
        host: str,
        port: int,
        *,
        verbose: bool = False,
        on_fatal: Optional[FatalHandler] = None,
    ):
        # bound before the scheduler thread starts
        self._endpoint = UdpEndpoint.ephemeral()
        super().__init__(store, verbose=verbose, on_fatal=on_fatal)
        self.server_port = port
        self.peer = PeerState(host)
        self._loop: Optional[threading.Thread] = None

    @property
    def server_host(self) -> str:
        host, _ = self.peer.snapshot()
        return host

    @property
    def server_tid(self) -> Optional[int]:
        _, tid = self.peer.snapshot()
        return tid

    @property
    def local_port(self) -> int:
        return self._endpoint.port

    def start(self) -> None:
        with self._lock:
            self._loop = self._spawn(self._endpoint, "server")
            self.state = SideState.LISTENING

    def send_to_server(self, raw: bytes) -> Optional[FaultInstruction]:
        return self.relay(raw)

    def retarget(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """Point the relay at a different server, recreating its endpoint.

        The learned TID belongs to the old server and is forgotten.
        """
        with self._lock:
            new_host = host if host is not None else self.server_host
            new_port = port if port is not None else self.server_port
            self._endpoint.close()
            if self._loop is not None:
                self._loop.join()
            self._endpoint = UdpEndpoint.ephemeral()
            self.peer = PeerState(new_host)
            self.server_port = new_port
            if self.state is SideState.LISTENING:
                self._loop = self._spawn(self._endpoint, "server")
        logger.info("forwarding requests to server %s:%d", new_host, new_port)

    def _on_receive(self, data: bytes, addr: Address) -> None:
        self.peer.set_port(addr[1])

    def _send_endpoint(self) -> UdpEndpoint:
        return self._endpoint

    def _destination(self, raw: bytes) -> Optional[Address]:
        host, tid = self.peer.snapshot()
        # requests route on the opcode alone; the rest need not parse
        if opcode_of(raw) in REQUEST_KINDS:
            return host, self.server_port
        if tid is None:
            return None
        return host, tid

    def _close_endpoints(self) -> None:
        self._endpoint.close()
        if self._loop is not None:
            self._loop.join()
