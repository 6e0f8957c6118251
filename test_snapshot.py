#!/usr/bin/env python3
"""
Snapshot tests

Tests:
1. Round-trip keeps every key, signature and exact weight
2. Archive holds no pickled objects
3. Metadata mismatches raise VersionMismatch
4. Tampered or truncated files raise SnapshotIOError
5. A failed write leaves the previous snapshot intact and no temp file
6. JSON receipt writer
"""

import os
import tempfile
from pathlib import Path
import numpy as np
import pytest
from districts.io import snapshot as snapshot_mod
from districts.io.load_dataset import load_dataset
from districts.io.save import write_json
from districts.io.snapshot import (
    save_snapshot, load_snapshot, verify_snapshot, snapshot_arrays, SNAPSHOT_FORMAT,
)
from districts.op.buckets import BucketStore
from districts.op.enumerate import enumerate_half
from districts.op.errors import SnapshotIOError, VersionMismatch
from district_fixtures import write_dataset


def _big_store():
    s = BucketStore(6)
    s.add((), (), 2**100 + 7)
    s.add((1, 5), (3, 40), 1)
    s.add((1, 5), (2, 41), 3**80)
    s.add((2, 2, 2), (9, 9, 10), 0)
    return s


def test_round_trip():
    """Serialised then deserialised store is identical."""
    print("Testing round-trip...")

    with tempfile.TemporaryDirectory() as tmpdir:
        ds = load_dataset(str(write_dataset(Path(tmpdir) / "n4.npz", 4)))
        store = enumerate_half(ds)
        path = Path(tmpdir) / "snap.npz"
        digest = save_snapshot(path, store, ds.version)
        snap = load_snapshot(path)

        assert snap.store == store
        assert snap.store_digest == digest == store.digest()
        assert snap.n == 4
        assert snap.dataset_version == ds.version
        assert snap.reflection == "mirror"
        assert snap.format == SNAPSHOT_FORMAT
        verify_snapshot(snap, ds)

        big = _big_store()
        save_snapshot(Path(tmpdir) / "big.npz", big, "v")
        back = load_snapshot(Path(tmpdir) / "big.npz").store
        assert back == big
        assert back.bucket(())[()] == 2**100 + 7
        assert back.bucket((1, 5))[(2, 41)] == 3**80

    print("  ✓ Round-trip exact")


def test_no_pickle():
    """Every member loads with allow_pickle=False."""
    print("Testing pickle-free archive...")

    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "big.npz"
        save_snapshot(path, _big_store(), "v")
        with np.load(path, allow_pickle=False) as npz:
            names = set(npz.files)
            for name in npz.files:
                assert npz[name].dtype != object
        assert {"meta_format", "meta_N", "meta_dataset_version", "meta_reflection",
                "meta_store_digest", "meta_bucket_keys_data", "meta_bucket_keys_indptr"} <= names
        assert {"b0_key", "b0_rows_data", "b0_rows_indptr", "b0_weights"} <= names

    print("  ✓ No object arrays")


def test_version_mismatch():
    """N, dataset version, reflection and format are all checked."""
    print("Testing VersionMismatch...")

    with tempfile.TemporaryDirectory() as tmpdir:
        ds4 = load_dataset(str(write_dataset(Path(tmpdir) / "n4.npz", 4)))
        ds2 = load_dataset(str(write_dataset(Path(tmpdir) / "n2.npz", 2)))
        store = enumerate_half(ds4)

        save_snapshot(Path(tmpdir) / "ok.npz", store, ds4.version)
        snap = load_snapshot(Path(tmpdir) / "ok.npz")
        with pytest.raises(VersionMismatch) as info:
            verify_snapshot(snap, ds2)
        assert info.value.field == "N"
        with pytest.raises(VersionMismatch) as info:
            verify_snapshot(snap, ds4, reflection="explicit")
        assert info.value.field == "reflection"

        save_snapshot(Path(tmpdir) / "stale.npz", store, "0" * 64)
        stale = load_snapshot(Path(tmpdir) / "stale.npz")
        with pytest.raises(VersionMismatch) as info:
            verify_snapshot(stale, ds4)
        assert info.value.field == "dataset_version"

        arrays = snapshot_arrays(store, ds4.version, "mirror")
        arrays["meta_format"] = np.array([SNAPSHOT_FORMAT + 1], dtype=np.int64)
        np.savez(Path(tmpdir) / "future.npz", **arrays)
        future = load_snapshot(Path(tmpdir) / "future.npz")
        with pytest.raises(VersionMismatch) as info:
            verify_snapshot(future, ds4)
        assert info.value.field == "format"

    print("  ✓ Mismatches refused")


def test_corrupt_snapshots():
    """Unreadable, incomplete or tampered snapshots are refused."""
    print("Testing corrupt snapshots...")

    store = _big_store()
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        with pytest.raises(SnapshotIOError):
            load_snapshot(tmp / "missing.npz")

        (tmp / "junk.npz").write_bytes(b"PK\x03\x04 truncated")
        with pytest.raises(SnapshotIOError):
            load_snapshot(tmp / "junk.npz")

        arrays = snapshot_arrays(store, "v", "mirror")
        del arrays["b1_weights"]
        np.savez(tmp / "incomplete.npz", **arrays)
        with pytest.raises(SnapshotIOError):
            load_snapshot(tmp / "incomplete.npz")

        arrays = snapshot_arrays(store, "v", "mirror")
        arrays["b1_weights"] = arrays["b1_weights"] + np.uint64(1)
        np.savez(tmp / "tampered.npz", **arrays)
        with pytest.raises(SnapshotIOError):
            load_snapshot(tmp / "tampered.npz")

    print("  ✓ Corruption detected")


def test_atomic_write():
    """A write that dies midway leaves the old snapshot readable."""
    print("Testing atomic write...")

    store = _big_store()
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "snap.npz"
        save_snapshot(path, store, "v1")
        before = path.read_bytes()

        def dying_write(f, arrays):
            f.write(b"PK\x03\x04 partial")
            raise OSError("disk full")

        real_write = snapshot_mod._write_npz
        snapshot_mod._write_npz = dying_write
        try:
            with pytest.raises(SnapshotIOError):
                save_snapshot(path, BucketStore(6), "v2")
        finally:
            snapshot_mod._write_npz = real_write

        assert path.read_bytes() == before
        assert load_snapshot(path).dataset_version == "v1"
        assert os.listdir(tmpdir) == ["snap.npz"], os.listdir(tmpdir)

        # fresh target: nothing appears at all
        fresh = Path(tmpdir) / "fresh.npz"
        snapshot_mod._write_npz = dying_write
        try:
            with pytest.raises(SnapshotIOError):
                save_snapshot(fresh, store, "v1")
        finally:
            snapshot_mod._write_npz = real_write
        assert not fresh.exists()
        assert os.listdir(tmpdir) == ["snap.npz"]

    print("  ✓ Writes are atomic")


def test_json_writers():
    """Receipt writer is atomic and canonical."""
    print("Testing JSON writer...")

    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "nested" / "receipt.json"
        write_json(path, {"b": 2**70, "a": [1, 2]})
        assert path.read_text() == '{"a":[1,2],"b":' + str(2**70) + "}"
        assert sorted(os.listdir(tmpdir)) == ["nested"]
        assert os.listdir(path.parent) == ["receipt.json"]

    print("  ✓ Writer")


def run_tests():
    """Run all snapshot tests."""
    print("\n" + "="*60)
    print("Snapshot Tests")
    print("="*60 + "\n")

    test_round_trip()
    test_no_pickle()
    test_version_mismatch()
    test_corrupt_snapshots()
    test_atomic_write()
    test_json_writers()

    print("\n" + "="*60)
    print("✓ All snapshot tests passed")
    print("="*60 + "\n")


if __name__ == "__main__":
    run_tests()
