from __future__ import annotations

OPCODE_FORMAT = "!H"
BLOCK_FORMAT = "!HH"  # opcode, block number

RRQ = 1
WRQ = 2
DATA = 3
ACK = 4
ERROR = 5

BLOCK_SIZE = 512
MAX_DATAGRAM = 1024  # full DATA packet is 516 bytes

DEFAULT_CLIENT_PORT = 23
DEFAULT_SERVER_PORT = 69
DEFAULT_SERVER_HOST = "localhost"
DEFAULT_LISTEN_HOST = "0.0.0.0"

RECV_POLL_MS = 500
