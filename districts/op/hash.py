# districts/op/hash.py
# BLAKE3 hashing helpers for dataset versions, store digests and receipts

from __future__ import annotations
from typing import Mapping
from blake3 import blake3
import numpy as np
from .bytes import to_bytes_array


def hash_bytes(b: bytes) -> str:
    """
    Hash bytes with BLAKE3, return hex digest.

    Args:
        b: bytes to hash

    Returns:
        str: hex digest (64 hex chars = 256 bits)
    """
    return blake3(b).hexdigest()


def hash_arrays(arrays: Mapping[str, np.ndarray]) -> str:
    """
    Hash a named set of arrays independently of member order.

    Each member contributes name, dtype string, shape and little-endian
    payload, visited in sorted name order, so two archives with the same
    content hash equal even if they were written in a different order.

    Args:
        arrays: name -> array

    Returns:
        str: BLAKE3 hex digest
    """
    h = blake3()
    for name in sorted(arrays):
        a = np.asarray(arrays[name])
        h.update(name.encode("utf-8") + b"\x00")
        h.update(a.dtype.newbyteorder('<').str.encode("ascii") + b"\x00")
        h.update(repr(tuple(a.shape)).encode("ascii") + b"\x00")
        h.update(to_bytes_array(a))
    return h.hexdigest()
