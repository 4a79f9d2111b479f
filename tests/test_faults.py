from __future__ import annotations

import threading

import pytest

from errsim.faults import FaultInstruction, FaultKind, FaultStore
from errsim.packet import Acknowledgment, Data, ErrorPacket, PacketKind, ReadRequest, WriteRequest


def data(block: int) -> bytes:
    return Data(block, b"payload").to_bytes()


def wrq() -> bytes:
    return WriteRequest("f.txt", "octet").to_bytes()


def test_invalid_instructions_rejected():
    with pytest.raises(ValueError):
        FaultInstruction(PacketKind.DATA, FaultKind.DROP, -1)
    with pytest.raises(ValueError):
        FaultInstruction(PacketKind.DATA, FaultKind.DELAY, 1, timing_ms=-5)
    with pytest.raises(ValueError):
        FaultInstruction(PacketKind.DATA, FaultKind.DROP, 1, repeat=0)


def test_add_rejects_duplicates():
    store = FaultStore()
    assert store.add(FaultInstruction(PacketKind.ACK, FaultKind.DROP, 3))
    assert not store.add(FaultInstruction(PacketKind.ACK, FaultKind.DROP, 3))
    assert len(store) == 1


def test_skipped_count_does_not_affect_equality():
    a = FaultInstruction(PacketKind.RRQ, FaultKind.DROP, 2)
    b = FaultInstruction(PacketKind.RRQ, FaultKind.DROP, 2)
    a.skipped = 1
    assert a == b


def test_remove():
    store = FaultStore()
    store.add(FaultInstruction(PacketKind.DATA, FaultKind.DROP, 1))
    assert store.remove(FaultInstruction(PacketKind.DATA, FaultKind.DROP, 1))
    assert not store.remove(FaultInstruction(PacketKind.DATA, FaultKind.DROP, 1))
    assert store.instructions() == []


def test_block_selector_is_exact():
    store = FaultStore()
    store.add(FaultInstruction(PacketKind.DATA, FaultKind.DROP, 2))
    assert store.match(data(1)) is None
    assert store.match(data(3)) is None
    assert store.match(Acknowledgment(2).to_bytes()) is None
    ei = store.match(data(2))
    assert ei is not None and ei.fired == 1
    assert len(store) == 0


def test_ordinal_selector_counts_same_kind_only():
    store = FaultStore()
    store.add(FaultInstruction(PacketKind.RRQ, FaultKind.DROP, 2))
    rrq = ReadRequest("a", "octet").to_bytes()
    assert store.match(rrq) is None
    assert store.match(wrq()) is None
    assert store.match(data(1)) is None
    assert store.match(rrq) is None
    assert store.match(rrq) is not None
    assert len(store) == 0


def test_repeat_count_exhausts():
    store = FaultStore()
    store.add(FaultInstruction(PacketKind.ACK, FaultKind.DROP, 1, repeat=3))
    ack = Acknowledgment(1).to_bytes()
    hits = [store.match(ack) for _ in range(5)]
    assert [h is not None for h in hits] == [True, True, True, False, False]
    assert store.instructions() == []


def test_infinite_rule_never_removed_and_resets():
    store = FaultStore()
    store.add(FaultInstruction(PacketKind.WRQ, FaultKind.DELAY, 0, timing_ms=300, repeat=-1))
    for _ in range(10):
        ei = store.match(wrq())
        assert ei is not None
        assert ei.skipped == 0
    (ei,) = store.instructions()
    assert ei.fired == 10
    assert ei.remaining is None


def test_ordinal_rule_refires_at_same_position():
    store = FaultStore()
    store.add(FaultInstruction(PacketKind.ERROR, FaultKind.DROP, 1, repeat=2))
    err = ErrorPacket(0, "x").to_bytes()
    hits = [store.match(err) is not None for _ in range(4)]
    assert hits == [False, True, False, True]


def test_exhausted_rule_resets_skip_count():
    store = FaultStore()
    ei = FaultInstruction(PacketKind.RRQ, FaultKind.DROP, 1)
    store.add(ei)
    rrq = ReadRequest("a", "octet").to_bytes()
    store.match(rrq)
    assert store.match(rrq) is ei
    assert ei.skipped == 0


def test_only_first_matching_rule_fires():
    store = FaultStore()
    first = FaultInstruction(PacketKind.DATA, FaultKind.DELAY, 4, timing_ms=10)
    second = FaultInstruction(PacketKind.DATA, FaultKind.DROP, 4)
    store.add(first)
    store.add(second)
    assert store.match(data(4)) is first
    assert store.match(data(4)) is second
    assert len(store) == 0


def test_unparseable_never_matches():
    store = FaultStore()
    store.add(FaultInstruction(PacketKind.DATA, FaultKind.DROP, 0))
    assert store.match(b"\x00") is None
    assert store.match(b"\x00\x03\x00") is None
    assert len(store) == 1


def test_concurrent_matching_keeps_counters_consistent():
    store = FaultStore()
    store.add(FaultInstruction(PacketKind.ACK, FaultKind.DROP, 7, repeat=50))
    ack = Acknowledgment(7).to_bytes()
    hits = []

    def worker():
        for _ in range(40):
            if store.match(ack) is not None:
                hits.append(1)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(hits) == 50
    assert len(store) == 0


def test_describe():
    store = FaultStore()
    assert store.describe() == "No errors pending creation."
    store.add(FaultInstruction(PacketKind.DATA, FaultKind.DUPLICATE, 3, timing_ms=100, repeat=2))
    store.add(FaultInstruction(PacketKind.WRQ, FaultKind.DELAY, 0, timing_ms=50, repeat=-1))
    text = store.describe()
    assert "1. Duplicate DATA packet 3 with 100 ms between packets. Perform 2 time(s), 2 remaining." in text
    assert "2. Delay WRQ packet 0 by 50 ms. Repeat forever." in text


def test_option_bearing_requests_count_as_requests():
    store = FaultStore()
    store.add(FaultInstruction(PacketKind.RRQ, FaultKind.DROP, 1))
    rrq = ReadRequest("big.iso", "octet", ("tsize", "0", "blksize", "1428")).to_bytes()
    assert store.match(rrq) is None
    (ei,) = store.instructions()
    assert ei.skipped == 1
    assert store.match(rrq) is ei
    assert ei.fired == 1
    assert len(store) == 0
