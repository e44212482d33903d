import pytest

from stash.errors import QuotaExceeded
from stash.services.quota_gate import QuotaGate


def test_admit_accumulates():
    gate = QuotaGate(100)
    gate.admit(30)
    gate.admit(20)
    assert gate.written_bytes == 50
    assert gate.remaining == 50


def test_exact_fill_is_accepted():
    gate = QuotaGate(100)
    gate.admit(100)
    assert gate.written_bytes == 100
    assert gate.remaining == 0


def test_rejected_chunk_leaves_counter_unchanged():
    gate = QuotaGate(100)
    gate.admit(60)
    with pytest.raises(QuotaExceeded):
        gate.admit(41)
    assert gate.written_bytes == 60

    # a smaller chunk still fits
    gate.admit(40)
    assert gate.written_bytes == 100


def test_running_total_never_exceeds_maximum():
    gate = QuotaGate(1000)
    rejected = []
    for length in [300, 250, 400, 100, 10, 500, 1, 0, 39]:
        before = gate.written_bytes
        try:
            gate.admit(length)
        except QuotaExceeded:
            rejected.append(length)
            assert gate.written_bytes == before
        assert gate.written_bytes <= gate.max_bytes

    assert rejected == [100, 500]
    assert gate.written_bytes == 1000


def test_full_gate_rejects_one_byte():
    gate = QuotaGate(10)
    gate.admit(10)
    with pytest.raises(QuotaExceeded) as exc_info:
        gate.admit(1)
    assert "No space left" in exc_info.value.message
    assert exc_info.value.details["max_bytes"] == "10"


def test_reset_returns_previous_count():
    gate = QuotaGate(100)
    gate.admit(70)
    assert gate.reset() == 70
    assert gate.written_bytes == 0
    gate.admit(100)


def test_negative_maximum_is_rejected():
    with pytest.raises(ValueError):
        QuotaGate(-1)
