"""Pending fault instructions and the matcher that decides which one a packet triggers.

DATA and ACK packets carry a block number, so their instructions select a block
directly. RRQ, WRQ and ERROR packets carry nothing comparable; for those the
selector is an ordinal: the number of same-kind packets to let through before
the fault fires.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from .packet import PacketKind, parse

logger = logging.getLogger(__name__)

BLOCK_SELECTED = frozenset({PacketKind.DATA, PacketKind.ACK})


class FaultKind(enum.Enum):
    DROP = "drop"
    DUPLICATE = "duplicate"
    DELAY = "delay"


@dataclass(slots=True)
class FaultInstruction:
    packet_kind: PacketKind
    fault: FaultKind
    selector: int
    timing_ms: int = 0
    repeat: int = 1
    fired: int = 0
    skipped: int = field(default=0, compare=False)

    def __post_init__(self) -> None:
        if self.selector < 0:
            raise ValueError("packet number can't be less than 0")
        if self.timing_ms < 0:
            raise ValueError("delay can't be less than 0")
        if self.repeat == 0:
            raise ValueError("can't perform a fault 0 times")

    @property
    def is_infinite(self) -> bool:
        return self.repeat < 0

    @property
    def remaining(self) -> Optional[int]:
        if self.is_infinite:
            return None
        return self.repeat - self.fired

    def selects(self, packet) -> bool:
        """Check the selector against a packet of this instruction's kind.

        Ordinal selectors count the miss as a side effect.
        """
        if self.packet_kind in BLOCK_SELECTED:
            return packet.block == self.selector
        if self.skipped == self.selector:
            return True
        self.skipped += 1
        return False

    def describe(self) -> str:
        desc = f"{self.fault.name.capitalize()} {self.packet_kind.name} packet {self.selector}"
        if self.fault is FaultKind.DELAY:
            desc += f" by {self.timing_ms} ms"
        elif self.fault is FaultKind.DUPLICATE:
            desc += f" with {self.timing_ms} ms between packets"
        if self.is_infinite:
            desc += ". Repeat forever."
        else:
            desc += f". Perform {self.repeat} time(s), {self.remaining} remaining."
        return desc

    def __str__(self) -> str:
        return self.describe()


class FaultStore:
    """Thread-safe, insertion-ordered registry of pending fault instructions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: list[FaultInstruction] = []

    def add(self, instruction: FaultInstruction) -> bool:
        with self._lock:
            if instruction in self._pending:
                return False
            self._pending.append(instruction)
        logger.debug("fault added: %s", instruction)
        return True

    def remove(self, instruction: FaultInstruction) -> bool:
        with self._lock:
            try:
                self._pending.remove(instruction)
            except ValueError:
                return False
        logger.debug("fault removed: %s", instruction)
        return True

    def instructions(self) -> list[FaultInstruction]:
        with self._lock:
            return list(self._pending)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)

    def match(self, raw: bytes) -> Optional[FaultInstruction]:
        """Return the first pending instruction the packet triggers, advancing its counters.

        At most one instruction fires per packet. An instruction that has fired
        ``repeat`` times is removed before it is returned.
        """
        with self._lock:
            if not self._pending:
                return None

            packet = parse(raw)
            if packet.kind is None:
                return None

            for index, instruction in enumerate(self._pending):
                if instruction.packet_kind != packet.kind:
                    continue
                if not instruction.selects(packet):
                    continue

                instruction.fired += 1
                instruction.skipped = 0
                if instruction.fired == instruction.repeat:
                    del self._pending[index]
                return instruction

        return None

    def describe(self) -> str:
        pending = self.instructions()
        if not pending:
            return "No errors pending creation."
        lines = ["The following errors will be created:"]
        lines.extend(f"{i}. {ei}" for i, ei in enumerate(pending, start=1))
        return "\n".join(lines)
