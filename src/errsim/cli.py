from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, TextIO

from .console import Console
from .constants import DEFAULT_CLIENT_PORT, DEFAULT_LISTEN_HOST, DEFAULT_SERVER_HOST, DEFAULT_SERVER_PORT
from .net import SetupError
from .simulator import ErrorSimulator


def _port_type(low: int):
    def convert(text: str) -> int:
        port = int(text)
        if not low <= port <= 65535:
            raise argparse.ArgumentTypeError(f"port must be {low}-65535, got {port}")
        return port

    convert.__name__ = "port"
    return convert


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="errsim", description="Fault-injecting relay between a TFTP client and server.")
    p.add_argument("-v", "--verbose", action="store_true", help="log every packet relayed")
    p.add_argument("--client-port", type=_port_type(0), default=DEFAULT_CLIENT_PORT, help="port to listen for client requests on")
    p.add_argument("--listen-host", default=DEFAULT_LISTEN_HOST)
    p.add_argument("--server-host", default=DEFAULT_SERVER_HOST, help="address of the TFTP server")
    p.add_argument("--server-port", type=_port_type(1), default=DEFAULT_SERVER_PORT, help="port of the server's listener")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    return p


def main(
    argv: Optional[list[str]] = None,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout

    try:
        sim = ErrorSimulator(
            args.client_port,
            args.server_host,
            args.server_port,
            listen_host=args.listen_host,
            verbose=args.verbose,
        )
    except SetupError as e:
        print(f"errsim: {e}", file=sys.stderr)
        return 1

    print("Error Simulator Running", file=stdout, flush=True)
    try:
        sim.start()
        Console(sim, stdout).run(stdin)
    except SetupError as e:
        print(f"errsim: {e}", file=sys.stderr)
        return 1
    finally:
        sim.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
