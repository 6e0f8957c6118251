#!/usr/bin/env python3
"""
Memory governor tests

Tests:
1. No ceiling: ticks never raise, RSS still sampled
2. Cadence is state-count based
3. Breach sets the token and raises MemoryExceeded
4. A set token raises RunAborted at the next check
5. Errors survive pickling (worker process boundary)
"""

import pickle
import threading
import pytest
from districts.op.governor import MemoryGovernor, ceiling_from_gb
from districts.op.errors import MemoryExceeded, RunAborted, VersionMismatch, DistrictsError


def test_no_ceiling():
    """Without a ceiling the governor only observes."""
    print("Testing no ceiling...")

    gov = MemoryGovernor(ceiling_bytes=None, check_every=1)
    for _ in range(10):
        gov.tick()
    gov.checkpoint("done")
    assert gov.states == 10
    assert gov.checks == 11
    assert gov.peak_rss > 0
    assert gov.peak_rss >= gov.last_rss

    print("  ✓ Observation only")


def test_cadence():
    """A check runs every check_every states."""
    print("Testing cadence...")

    gov = MemoryGovernor(check_every=3)
    for _ in range(5):
        gov.tick()
    assert gov.checks == 1
    gov.tick()
    assert gov.checks == 2
    gov.tick(7)
    assert gov.checks == 3
    assert gov.states == 13

    with pytest.raises(ValueError):
        MemoryGovernor(check_every=0)

    print("  ✓ State-count cadence")


def test_breach():
    """Ceiling below current RSS aborts."""
    print("Testing breach...")

    token = threading.Event()
    gov = MemoryGovernor(ceiling_bytes=1, check_every=2, token=token)
    gov.tick()
    assert not token.is_set()
    with pytest.raises(MemoryExceeded) as info:
        gov.tick()
    assert token.is_set()
    assert info.value.ceiling_bytes == 1
    assert info.value.rss_bytes > 1
    assert info.value.exit_code == 4

    print("  ✓ MemoryExceeded raised, token set")


def test_token_aborts():
    """A set token wins over sampling."""
    print("Testing token abort...")

    token = threading.Event()
    gov = MemoryGovernor(check_every=1, token=token)
    gov.tick()
    token.set()
    with pytest.raises(RunAborted):
        gov.tick()
    with pytest.raises(RunAborted):
        gov.checkpoint("root 3")

    print("  ✓ RunAborted on cancel")


def test_ceiling_from_gb():
    """Gigabytes to bytes."""
    print("Testing ceiling_from_gb...")

    assert ceiling_from_gb(None) is None
    assert ceiling_from_gb(0) is None
    assert ceiling_from_gb(-2) is None
    assert ceiling_from_gb(1) == 2**30
    assert ceiling_from_gb(0.5) == 2**29

    print("  ✓ Conversion")


def test_errors_pickle():
    """Errors keep their fields across processes."""
    print("Testing error pickling...")

    e = pickle.loads(pickle.dumps(MemoryExceeded(5 * 2**30, 4 * 2**30)))
    assert isinstance(e, MemoryExceeded)
    assert (e.rss_bytes, e.ceiling_bytes) == (5 * 2**30, 4 * 2**30)
    assert "5.00 GiB" in str(e)

    v = pickle.loads(pickle.dumps(VersionMismatch("N", 4, 6)))
    assert (v.field, v.expected, v.found) == ("N", 4, 6)
    assert v.exit_code == 5

    r = pickle.loads(pickle.dumps(RunAborted("stop")))
    assert isinstance(r, DistrictsError) and r.exit_code == 7

    print("  ✓ Errors picklable")


def run_tests():
    """Run all governor tests."""
    print("\n" + "="*60)
    print("Memory Governor Tests")
    print("="*60 + "\n")

    test_no_ceiling()
    test_cadence()
    test_breach()
    test_token_aborts()
    test_ceiling_from_gb()
    test_errors_pickle()

    print("\n" + "="*60)
    print("✓ All governor tests passed")
    print("="*60 + "\n")


if __name__ == "__main__":
    run_tests()
