#!/usr/bin/env python3
"""
Half-grid enumerator tests

Tests:
1. N=2 store by hand
2. Conservation: per-bucket totals equal a plain exact-cover count
3. Determinism: repeated runs and worker counts give one digest
4. Governor abort discards the walk (in-process and with workers)
5. Seed slicing
"""

import tempfile
import threading
from pathlib import Path
import pytest
from districts.io.load_dataset import load_dataset
from districts.op.enumerate import enumerate_half, run_enumeration, seed_slices
from districts.op.governor import MemoryGovernor
from districts.op.errors import MemoryExceeded, RunAborted
from district_fixtures import write_dataset, half_fillings_by_key


def _dataset(n):
    with tempfile.TemporaryDirectory() as tmpdir:
        return load_dataset(str(write_dataset(Path(tmpdir) / f"n{n}.npz", n)))


def test_n2_by_hand():
    """2x2 grid: one vertical domino, or two single cells crossing the cut."""
    print("Testing N=2 store...")

    ds = _dataset(2)
    store = enumerate_half(ds)
    assert store.keys() == [(), (1, 1)]
    assert dict(store.bucket(())) == {(): 1}
    assert dict(store.bucket((1, 1))) == {(0, 1): 1}
    assert store.total_weight() == 2

    print("  ✓ N=2 store matches hand count")


def test_conservation_n4():
    """Bucket totals equal independent half-grid filling counts."""
    print("Testing conservation (N=4)...")

    ds = _dataset(4)
    store = enumerate_half(ds)
    expected = half_fillings_by_key(4)
    got = {key: sum(store.bucket(key).values()) for key in store.keys()}
    assert got == dict(expected), f"bucket totals differ:\n{got}\n{dict(expected)}"
    assert store.total_weight() == sum(expected.values())
    for key in store.keys():
        for sig in store.bucket(key):
            assert list(sig) == sorted(sig)
            assert ds.signature_key(sig) == key

    print(f"  ✓ {store.total_weight()} fillings in {len(store)} buckets")


def test_determinism():
    """Same inputs, same store, regardless of worker count."""
    print("Testing determinism...")

    ds = _dataset(4)
    s1, rc1 = run_enumeration(ds)
    s2, rc2 = run_enumeration(ds)
    assert s1 == s2
    assert rc1 == rc2
    assert rc1.store_digest == s1.digest()
    assert rc1.total_weight == s1.total_weight()
    assert rc1.pruned > 0

    s3, rc3 = run_enumeration(ds, workers=2)
    assert rc3.workers == 2
    assert s3 == s1
    assert rc3.store_digest == rc1.store_digest

    print("  ✓ Bit-identical stores")


def test_memory_abort():
    """A ceiling below the current RSS stops the walk."""
    print("Testing memory abort...")

    ds = _dataset(4)
    gov = MemoryGovernor(ceiling_bytes=1, check_every=1)
    with pytest.raises(MemoryExceeded):
        enumerate_half(ds, governor=gov)
    assert gov.token.is_set()

    gov = MemoryGovernor(ceiling_bytes=1, check_every=1)
    with pytest.raises(MemoryExceeded):
        enumerate_half(ds, governor=gov, workers=2)

    print("  ✓ MemoryExceeded propagates")


def test_cancel_token():
    """A pre-set token aborts at the first check."""
    print("Testing cancel token...")

    ds = _dataset(4)
    token = threading.Event()
    token.set()
    with pytest.raises(RunAborted):
        enumerate_half(ds, governor=MemoryGovernor(check_every=1, token=token))

    print("  ✓ RunAborted propagates")


def test_seed_slices():
    """Round-robin, disjoint, covering."""
    print("Testing seed slices...")

    assert seed_slices(5, 2) == [[0, 2, 4], [1, 3]]
    assert seed_slices(3, 8) == [[0], [1], [2]]
    assert seed_slices(4, 1) == [[0, 1, 2, 3]]
    assert seed_slices(0, 4) == [[]]

    print("  ✓ Slices")


def run_tests():
    """Run all enumerator tests."""
    print("\n" + "="*60)
    print("Half-Grid Enumerator Tests")
    print("="*60 + "\n")

    test_n2_by_hand()
    test_conservation_n4()
    test_determinism()
    test_memory_abort()
    test_cancel_token()
    test_seed_slices()

    print("\n" + "="*60)
    print("✓ All enumerator tests passed")
    print("="*60 + "\n")


if __name__ == "__main__":
    run_tests()
