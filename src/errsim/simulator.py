from __future__ import annotations

import logging
import threading
from typing import Optional

from .constants import DEFAULT_CLIENT_PORT, DEFAULT_LISTEN_HOST, DEFAULT_SERVER_HOST, DEFAULT_SERVER_PORT
from .faults import FaultStore
from .net import resolve_host
from .relay import ClientListener, FatalHandler, ServerRelay

logger = logging.getLogger(__name__)


class ErrorSimulator:
    """Wires the fault store and both relay sides together."""

    def __init__(
        self,
        client_port: int = DEFAULT_CLIENT_PORT,
        server_host: str = DEFAULT_SERVER_HOST,
        server_port: int = DEFAULT_SERVER_PORT,
        *,
        listen_host: str = DEFAULT_LISTEN_HOST,
        verbose: bool = False,
        on_fatal: Optional[FatalHandler] = None,
    ):
        self.store = FaultStore()
        self._lock = threading.Lock()
        self._closed = False

        address = resolve_host(server_host)
        self.client = ClientListener(self.store, client_port, host=listen_host, verbose=verbose, on_fatal=on_fatal)
        try:
            self.server = ServerRelay(self.store, address, server_port, verbose=verbose, on_fatal=on_fatal)
        except Exception:
            self.client.close()
            raise

        self.client.forward_to = self.server.send_to_server
        self.server.forward_to = self.client.send_to_client

    def start(self) -> None:
        self.client.start()
        self.server.start()
        logger.info(
            "error simulator running; client port %d, server %s:%d",
            self.client_port,
            self.server_host,
            self.server_port,
        )

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.client.close()
        self.server.close()
        logger.info("error simulator stopped")

    @property
    def verbose(self) -> bool:
        return self.client.verbose

    @verbose.setter
    def verbose(self, value: bool) -> None:
        self.client.verbose = value
        self.server.verbose = value

    @property
    def client_port(self) -> int:
        return self.client.known_port

    def set_client_port(self, port: int) -> None:
        self.client.set_known_port(port)

    @property
    def server_host(self) -> str:
        return self.server.server_host

    @property
    def server_port(self) -> int:
        return self.server.server_port

    def set_server_port(self, port: int) -> None:
        self.server.retarget(port=port)

    def set_server_host(self, host: str) -> None:
        # resolve before tearing anything down so a bad name changes nothing
        self.server.retarget(host=resolve_host(host))
