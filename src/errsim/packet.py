from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import ClassVar, Optional, Tuple, Union

from .constants import ACK, BLOCK_FORMAT, BLOCK_SIZE, DATA, ERROR, OPCODE_FORMAT, RRQ, WRQ


class PacketKind(enum.IntEnum):
    RRQ = RRQ
    WRQ = WRQ
    DATA = DATA
    ACK = ACK
    ERROR = ERROR

    @classmethod
    def from_name(cls, name: str) -> "PacketKind":
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(f"invalid packet type: {name!r}") from None


def _request_bytes(opcode: int, filename: str, mode: str, options: Tuple[str, ...]) -> bytes:
    fields = (filename, mode) + options
    return struct.pack(OPCODE_FORMAT, opcode) + b"".join(f.encode("ascii") + b"\x00" for f in fields)


def opcode_of(raw: bytes) -> Optional[int]:
    """The leading opcode, read without decoding the rest of the packet."""
    if len(raw) < 2:
        return None
    return struct.unpack_from(OPCODE_FORMAT, raw)[0]


@dataclass(frozen=True, slots=True)
class ReadRequest:
    kind: ClassVar[PacketKind] = PacketKind.RRQ
    filename: str
    mode: str = "octet"
    # option negotiation fields (RFC 2347) kept verbatim, name and value alternating
    options: Tuple[str, ...] = ()

    def to_bytes(self) -> bytes:
        return _request_bytes(RRQ, self.filename, self.mode, self.options)

    def describe(self) -> str:
        return f"RRQ filename={self.filename} mode={self.mode} options={list(self.options)}"


@dataclass(frozen=True, slots=True)
class WriteRequest:
    kind: ClassVar[PacketKind] = PacketKind.WRQ
    filename: str
    mode: str = "octet"
    # option negotiation fields (RFC 2347) kept verbatim, name and value alternating
    options: Tuple[str, ...] = ()

    def to_bytes(self) -> bytes:
        return _request_bytes(WRQ, self.filename, self.mode, self.options)

    def describe(self) -> str:
        return f"WRQ filename={self.filename} mode={self.mode} options={list(self.options)}"


@dataclass(frozen=True, slots=True)
class Data:
    kind: ClassVar[PacketKind] = PacketKind.DATA
    block: int
    payload: bytes = b""

    @property
    def last(self) -> bool:
        return len(self.payload) < BLOCK_SIZE

    def to_bytes(self) -> bytes:
        return struct.pack(BLOCK_FORMAT, DATA, self.block) + self.payload

    def describe(self) -> str:
        return f"DATA block={self.block} length={len(self.payload)}"


@dataclass(frozen=True, slots=True)
class Acknowledgment:
    kind: ClassVar[PacketKind] = PacketKind.ACK
    block: int

    def to_bytes(self) -> bytes:
        return struct.pack(BLOCK_FORMAT, ACK, self.block)

    def describe(self) -> str:
        return f"ACK block={self.block}"


@dataclass(frozen=True, slots=True)
class ErrorPacket:
    kind: ClassVar[PacketKind] = PacketKind.ERROR
    code: int
    message: str = ""

    def to_bytes(self) -> bytes:
        return struct.pack(BLOCK_FORMAT, ERROR, self.code) + self.message.encode("ascii", "replace") + b"\x00"

    def describe(self) -> str:
        return f"ERROR code={self.code} message={self.message}"


@dataclass(frozen=True, slots=True)
class Unparseable:
    """Bytes that are not a TFTP packet. Never matched by a fault instruction."""

    kind: ClassVar[Optional[PacketKind]] = None
    raw: bytes
    reason: str

    def describe(self) -> str:
        return f"unparseable ({self.reason}) length={len(self.raw)}"


Packet = Union[ReadRequest, WriteRequest, Data, Acknowledgment, ErrorPacket, Unparseable]


def _parse_request(raw: bytes, opcode: int) -> Packet:
    fields = raw[2:].split(b"\x00")
    # filename and mode must both be NUL-terminated; whatever follows is options
    if len(fields) < 3 or not fields[0] or not fields[1]:
        return Unparseable(raw, "malformed request")
    try:
        filename = fields[0].decode("ascii")
        mode = fields[1].decode("ascii")
    except UnicodeDecodeError:
        return Unparseable(raw, "non-ascii request field")
    tail = fields[2:]
    if tail[-1] == b"":
        tail = tail[:-1]
    options = tuple(f.decode("ascii", "replace") for f in tail)
    if opcode == RRQ:
        return ReadRequest(filename, mode, options)
    return WriteRequest(filename, mode, options)


def parse(raw: bytes) -> Packet:
    """Decode a datagram. Malformed input yields ``Unparseable`` instead of raising."""
    if len(raw) < 2:
        return Unparseable(raw, "datagram too small")

    (opcode,) = struct.unpack_from(OPCODE_FORMAT, raw)

    if opcode in (RRQ, WRQ):
        return _parse_request(raw, opcode)

    if opcode == DATA:
        if len(raw) < 4:
            return Unparseable(raw, "truncated data header")
        payload = raw[4:]
        if len(payload) > BLOCK_SIZE:
            return Unparseable(raw, "data payload too large")
        _, block = struct.unpack_from(BLOCK_FORMAT, raw)
        return Data(block, payload)

    if opcode == ACK:
        if len(raw) != 4:
            return Unparseable(raw, "ack must be 4 bytes")
        _, block = struct.unpack_from(BLOCK_FORMAT, raw)
        return Acknowledgment(block)

    if opcode == ERROR:
        code = struct.unpack_from(BLOCK_FORMAT, raw)[1] if len(raw) >= 4 else 0
        message = raw[4:].split(b"\x00", 1)[0].decode("ascii", "replace")
        return ErrorPacket(code, message)

    return Unparseable(raw, f"unknown opcode {opcode}")
