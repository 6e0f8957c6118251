# districts/op/bytes.py
# Canonical encodings: LEB128 varints and uint64 limb matrices for exact weights

from __future__ import annotations
from typing import List, Sequence
import numpy as np

LIMB_BITS = 64
LIMB_MASK = (1 << LIMB_BITS) - 1


def varu(n: int) -> bytes:
    """
    Encode unsigned integer as LEB128 varint.

    Unlike a fixed-width encoding this accepts integers of any size, so exact
    weights can be fed straight into digests.

    Args:
        n: unsigned integer (must be >= 0)

    Returns:
        bytes: LEB128 varint

    Raises:
        ValueError: if n < 0
    """
    if n < 0:
        raise ValueError("varu expects unsigned (n >= 0)")

    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            break
    return bytes(out)


def frame_ints(ints: Sequence[int]) -> bytes:
    """
    Frame an integer list as <count><v1>...<vk> (all LEB128).

    Args:
        ints: non-negative integers

    Returns:
        bytes: framed list
    """
    out = bytearray()
    out += varu(len(ints))
    for v in ints:
        out += varu(int(v))
    return bytes(out)


def int_to_limbs(value: int) -> List[int]:
    """
    Split a non-negative integer into little-endian 64-bit limbs.

    Zero encodes as a single zero limb.

    Raises:
        ValueError: if value < 0
    """
    if value < 0:
        raise ValueError(f"weights are non-negative, got {value}")
    limbs = []
    while True:
        limbs.append(value & LIMB_MASK)
        value >>= LIMB_BITS
        if not value:
            break
    return limbs


def ints_to_limb_matrix(values: Sequence[int]) -> np.ndarray:
    """
    Pack exact integers into a (len(values), k) uint64 matrix.

    k is the widest limb count in the batch (at least 1); narrower values are
    zero-padded in their high limbs.

    Args:
        values: non-negative integers

    Returns:
        np.ndarray: uint64 matrix, row i holds the limbs of values[i]
    """
    split = [int_to_limbs(int(v)) for v in values]
    width = max((len(s) for s in split), default=1)
    out = np.zeros((len(split), width), dtype=np.uint64)
    for i, limbs in enumerate(split):
        out[i, :len(limbs)] = np.array(limbs, dtype=np.uint64)
    return out


def limb_matrix_to_ints(mat: np.ndarray) -> List[int]:
    """
    Inverse of ints_to_limb_matrix.

    Raises:
        ValueError: if mat is not a 2-D unsigned integer array
    """
    if mat.ndim != 2 or mat.dtype.kind != "u":
        raise ValueError(f"limb matrix must be 2-D unsigned, got {mat.dtype} {mat.shape}")
    values = []
    for row in mat.tolist():
        v = 0
        for limb in reversed(row):
            v = (v << LIMB_BITS) | int(limb)
        values.append(v)
    return values


def to_bytes_array(a: np.ndarray) -> bytes:
    """
    Canonical payload bytes of an array: little-endian, C order.

    Args:
        a: numeric numpy array

    Returns:
        bytes: raw little-endian payload
    """
    a = np.ascontiguousarray(a)
    if a.dtype.byteorder == '>':
        a = a.astype(a.dtype.newbyteorder('<'))
    return a.tobytes(order="C")
