# districts/io/snapshot.py
# Phase-boundary snapshot of a bucket store: pickle-free .npz, atomic write, digest check

from __future__ import annotations
import logging
import os
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Tuple
import numpy as np

from ..op.buckets import BucketStore
from ..op.bytes import ints_to_limb_matrix, limb_matrix_to_ints
from ..op.errors import SnapshotIOError, VersionMismatch
from .save import atomic_open

logger = logging.getLogger(__name__)

SNAPSHOT_FORMAT = 1
REFLECTION_MIRROR = "mirror"


@dataclass
class Snapshot:
    path: str
    format: int
    n: int
    dataset_version: str
    reflection: str
    store_digest: str
    store: BucketStore


def _csr(seqs: List[Tuple[int, ...]]) -> Tuple[np.ndarray, np.ndarray]:
    indptr = np.zeros(len(seqs) + 1, dtype=np.int64)
    data: List[int] = []
    for i, s in enumerate(seqs):
        data.extend(s)
        indptr[i + 1] = len(data)
    return np.asarray(data, dtype=np.int32), indptr


def _uncsr(data: np.ndarray, indptr: np.ndarray) -> List[Tuple[int, ...]]:
    flat = [int(x) for x in data.tolist()]
    ptr = [int(x) for x in indptr.tolist()]
    if not ptr or ptr[0] != 0 or ptr[-1] != len(flat) or any(b < a for a, b in zip(ptr, ptr[1:])):
        raise SnapshotIOError("corrupt CSR index in snapshot")
    return [tuple(flat[a:b]) for a, b in zip(ptr, ptr[1:])]


def snapshot_arrays(store: BucketStore, dataset_version: str, reflection: str) -> Dict[str, np.ndarray]:
    """
    Archive members for a store.

    Layout (format 1):
        meta_format, meta_N, meta_dataset_version, meta_reflection,
        meta_store_digest, meta_bucket_keys_data / _indptr, and per bucket i:
        b{i}_key, b{i}_rows_data / _indptr (signatures), b{i}_weights
        (uint64 little-endian limbs, one row per signature).
    """
    keys = store.keys()
    keys_data, keys_indptr = _csr(keys)
    arrays: Dict[str, np.ndarray] = {
        "meta_format": np.array([SNAPSHOT_FORMAT], dtype=np.int64),
        "meta_N": np.array([store.n], dtype=np.int64),
        "meta_dataset_version": np.array(dataset_version),
        "meta_reflection": np.array(reflection),
        "meta_store_digest": np.array(store.digest()),
        "meta_bucket_keys_data": keys_data,
        "meta_bucket_keys_indptr": keys_indptr,
    }
    for i, key in enumerate(keys):
        rows = store.bucket(key)
        sigs = sorted(rows)
        rows_data, rows_indptr = _csr(sigs)
        arrays[f"b{i}_key"] = np.asarray(key, dtype=np.int32)
        arrays[f"b{i}_rows_data"] = rows_data
        arrays[f"b{i}_rows_indptr"] = rows_indptr
        arrays[f"b{i}_weights"] = ints_to_limb_matrix([rows[s] for s in sigs])
    return arrays


def _write_npz(f, arrays: Dict[str, np.ndarray]) -> None:
    np.savez_compressed(f, **arrays)


def save_snapshot(
    path: str | Path,
    store: BucketStore,
    dataset_version: str,
    reflection: str = REFLECTION_MIRROR,
) -> str:
    """
    Persist a completed bucket store.

    The archive is written to a temporary sibling, fsynced and renamed over
    path, so a reader never observes a partial file.

    Returns:
        str: the store digest embedded in the snapshot

    Raises:
        SnapshotIOError: any write failure (the temporary file is removed)
    """
    arrays = snapshot_arrays(store, dataset_version, reflection)
    try:
        with atomic_open(path, "wb") as f:
            _write_npz(f, arrays)
    except (OSError, ValueError) as e:
        raise SnapshotIOError(f"cannot write snapshot {path}: {e}") from e
    digest = str(arrays["meta_store_digest"])
    logger.info(
        "snapshot written: %s buckets=%d rows=%d digest=%s",
        path, len(store), store.row_count(), digest[:16],
    )
    return digest


def _text(arrays, name: str) -> str:
    a = arrays[name]
    if a.dtype.kind != "U":
        raise SnapshotIOError(f"snapshot member {name} is not text")
    return str(a.reshape(-1)[0]) if a.ndim else str(a)


def load_snapshot(path: str | Path) -> Snapshot:
    """
    Read a snapshot back into a BucketStore.

    Raises:
        SnapshotIOError: missing, unreadable or incomplete file, or content
            whose recomputed digest differs from the embedded one
    """
    path = str(path)
    if not os.path.isfile(path):
        raise SnapshotIOError(f"snapshot not found: {path}")
    try:
        with np.load(path, allow_pickle=False) as npz:
            arrays = {name: npz[name] for name in npz.files}
    except (OSError, ValueError, zipfile.BadZipFile, EOFError) as e:
        raise SnapshotIOError(f"cannot read snapshot {path}: {e}") from e

    try:
        fmt = int(arrays["meta_format"].reshape(-1)[0])
        n = int(arrays["meta_N"].reshape(-1)[0])
        version = _text(arrays, "meta_dataset_version")
        reflection = _text(arrays, "meta_reflection")
        digest = _text(arrays, "meta_store_digest")
        keys = _uncsr(arrays["meta_bucket_keys_data"], arrays["meta_bucket_keys_indptr"])

        store = BucketStore(n)
        for i, key in enumerate(keys):
            stored_key = tuple(int(x) for x in arrays[f"b{i}_key"].tolist())
            if stored_key != key:
                raise SnapshotIOError(f"bucket {i} key {stored_key} disagrees with index {key}")
            sigs = _uncsr(arrays[f"b{i}_rows_data"], arrays[f"b{i}_rows_indptr"])
            weights = limb_matrix_to_ints(arrays[f"b{i}_weights"])
            if len(weights) != len(sigs):
                raise SnapshotIOError(f"bucket {i} has {len(sigs)} rows but {len(weights)} weights")
            for sig, w in zip(sigs, weights):
                store.add(key, sig, w)
    except KeyError as e:
        raise SnapshotIOError(f"snapshot {path} is incomplete: missing {e}") from e
    except ValueError as e:
        raise SnapshotIOError(f"snapshot {path} is malformed: {e}") from e

    actual = store.digest()
    if actual != digest:
        raise SnapshotIOError(
            f"snapshot {path} digest mismatch: embedded {digest[:16]}, content {actual[:16]}"
        )
    logger.info("snapshot loaded: %s N=%d buckets=%d rows=%d", path, n, len(store), store.row_count())
    return Snapshot(
        path=path,
        format=fmt,
        n=n,
        dataset_version=version,
        reflection=reflection,
        store_digest=digest,
        store=store,
    )


def verify_snapshot(snapshot: Snapshot, dataset, reflection: str = REFLECTION_MIRROR) -> None:
    """
    Refuse to match a snapshot against a dataset it was not built from.

    Raises:
        VersionMismatch: format, N, dataset version or reflection differ
    """
    if snapshot.format != SNAPSHOT_FORMAT:
        raise VersionMismatch("format", SNAPSHOT_FORMAT, snapshot.format)
    if snapshot.n != dataset.n:
        raise VersionMismatch("N", dataset.n, snapshot.n)
    if snapshot.dataset_version != dataset.version:
        raise VersionMismatch("dataset_version", dataset.version, snapshot.dataset_version)
    if snapshot.reflection != reflection:
        raise VersionMismatch("reflection", reflection, snapshot.reflection)
