from __future__ import annotations

import logging
import sys
from typing import Callable, TextIO

from .faults import FaultInstruction, FaultKind
from .net import SetupError, resolve_host
from .packet import PacketKind
from .simulator import ErrorSimulator

logger = logging.getLogger(__name__)

HELP = """\
The following is a list of commands and their usage:
shutdown - Closes the error simulator program.
verbose - Makes the error simulator output more detailed information.
quiet - Makes the error simulator output only basic information.
clientport [x] - Shows the port used to listen for client requests, or changes it to x.
serverport [x] - Shows the port requests are forwarded to on the server, or changes it to x.
serverip [x] - Shows the IP address of the server, or changes it to x.
drop A B C - Drops a packet. A = packet type, B = packet number, C = # of times to create error.
    Valid packet types are RRQ, WRQ, DATA, ACK, ERROR. C < 0 is infinite.
delay A B C D - Delays a packet. A = packet type, B = packet number, C = delay time (ms), D = # of times to create error.
    Valid packet types are RRQ, WRQ, DATA, ACK, ERROR. D < 0 is infinite.
duplicate A B C D - Duplicates a packet. A = packet type, B = packet number, C = time between packets (ms), D = # of times to create error.
    Valid packet types are RRQ, WRQ, DATA, ACK, ERROR. D < 0 is infinite.
errors - Lists the errors pending creation.
help - Shows help information."""


class UsageError(ValueError):
    pass


def _port(text: str) -> int:
    port = int(text)
    if not 0 < port < 65536:
        raise ValueError(f"port out of range: {port}")
    return port


class Console:
    """Operator commands that drive a running ErrorSimulator."""

    prompt = "errsim> "

    def __init__(self, sim: ErrorSimulator, out: TextIO | None = None):
        self.sim = sim
        self.out = out or sys.stdout
        self.running = True
        self._commands: dict[str, Callable[[list[str]], None]] = {
            "shutdown": self._shutdown,
            "verbose": self._verbose,
            "quiet": self._quiet,
            "clientport": self._client_port,
            "serverport": self._server_port,
            "serverip": self._server_ip,
            "drop": self._drop,
            "delay": self._delay,
            "duplicate": self._duplicate,
            "errors": self._errors,
            "help": self._help,
        }

    def println(self, text: str) -> None:
        print(text, file=self.out, flush=True)

    def execute(self, line: str) -> bool:
        """Run one command line. Returns False once shutdown has been requested."""
        words = line.split()
        if not words:
            return self.running

        handler = self._commands.get(words[0].lower())
        if handler is None:
            self.println(f"Error: Unknown command {words[0]!r}. Type help for a list of commands.")
            return self.running

        try:
            handler(words[1:])
        except UsageError as e:
            self.println(f"Error: {e}")
        except ValueError as e:
            logger.debug("rejected %r: %s", line.strip(), e)
            self.println("Error: Invalid argument")
        return self.running

    def run(self, stream: TextIO) -> None:
        while self.running:
            self.out.write(self.prompt)
            self.out.flush()
            line = stream.readline()
            if not line:
                break
            self.execute(line)

    @staticmethod
    def _arity(args: list[str], low: int, high: int | None = None) -> None:
        high = low if high is None else high
        if len(args) > high:
            raise UsageError("Too many parameters.")
        if len(args) < low:
            raise UsageError("Not enough parameters.")

    def _shutdown(self, args: list[str]) -> None:
        self._arity(args, 0)
        self.sim.close()
        self.running = False

    def _verbose(self, args: list[str]) -> None:
        self._arity(args, 0)
        self.sim.verbose = True

    def _quiet(self, args: list[str]) -> None:
        self._arity(args, 0)
        self.sim.verbose = False

    def _client_port(self, args: list[str]) -> None:
        self._arity(args, 0, 1)
        if not args:
            self.println(f"Client port: {self.sim.client_port}")
            return
        self.sim.set_client_port(_port(args[0]))

    def _server_port(self, args: list[str]) -> None:
        self._arity(args, 0, 1)
        if not args:
            self.println(f"Server port: {self.sim.server_port}")
            return
        self.sim.set_server_port(_port(args[0]))

    def _server_ip(self, args: list[str]) -> None:
        self._arity(args, 0, 1)
        if not args:
            self.println(f"Server ip: {self.sim.server_host}")
            return
        try:
            address = resolve_host(args[0])
        except SetupError as e:
            raise ValueError(str(e)) from e
        self.sim.set_server_host(address)

    def _add(self, fault: FaultKind, args: list[str]) -> None:
        timed = fault is not FaultKind.DROP
        self._arity(args, 4 if timed else 3)
        try:
            kind = PacketKind.from_name(args[0])
        except ValueError:
            raise UsageError("Invalid packet type") from None

        selector = int(args[1])
        timing_ms = int(args[2]) if timed else 0
        repeat = int(args[-1])
        instruction = FaultInstruction(kind, fault, selector, timing_ms, repeat)
        if not self.sim.store.add(instruction):
            raise UsageError("That error is already pending.")
        self.println(f"Added: {instruction}")

    def _drop(self, args: list[str]) -> None:
        self._add(FaultKind.DROP, args)

    def _delay(self, args: list[str]) -> None:
        self._add(FaultKind.DELAY, args)

    def _duplicate(self, args: list[str]) -> None:
        self._add(FaultKind.DUPLICATE, args)

    def _errors(self, args: list[str]) -> None:
        self.println(self.sim.store.describe())

    def _help(self, args: list[str]) -> None:
        self.println(HELP)
