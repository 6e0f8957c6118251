# districts/op/buckets.py
# Bucket store: partial-population vector -> {boundary signature -> exact weight}

from __future__ import annotations
from types import MappingProxyType
from typing import Dict, List, Mapping, Tuple
from blake3 import blake3
from .bytes import varu, frame_ints

Key = Tuple[int, ...]
Signature = Tuple[int, ...]
Bucket = Dict[Signature, int]


def complement_key(key: Key, n: int) -> Key:
    """
    Population vector the other half must show to close every district.

    Args:
        key: sorted partial populations of one half
        n: district size

    Returns:
        Sorted tuple of n - p for each p in key
    """
    return tuple(sorted(n - p for p in key))


class BucketStore:
    """
    Bucketed result of one half-grid enumeration.

    Contract:
        - A signature is the sorted tuple of j-type IDs of the districts that
          cross the cut; repeats are allowed.
        - The key of a bucket is the sorted population vector of its
          signatures, so every signature in a bucket has len(key) entries.
        - Weights are exact non-negative ints and only ever grow.
    """

    def __init__(self, n: int) -> None:
        self.n = int(n)
        self._buckets: Dict[Key, Bucket] = {}

    def add(self, key: Key, signature: Signature, weight: int) -> None:
        """
        Accumulate weight into (key, signature).

        Raises:
            ValueError: negative weight, or key/signature length disagree
        """
        if weight < 0:
            raise ValueError(f"negative weight {weight} for {key}/{signature}")
        if len(key) != len(signature):
            raise ValueError(f"key {key} does not fit signature {signature}")
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = self._buckets[key] = {}
        bucket[signature] = bucket.get(signature, 0) + weight

    def add_bucket(self, key: Key, rows: Mapping[Signature, int]) -> None:
        """Accumulate every row of a bucket mapping."""
        for signature, weight in rows.items():
            self.add(key, signature, weight)

    def merge(self, other: "BucketStore") -> None:
        """
        Fold another store into this one by adding weights.

        Raises:
            ValueError: if the stores were built for different N
        """
        if other.n != self.n:
            raise ValueError(f"cannot merge store for N={other.n} into N={self.n}")
        for key, rows in other._buckets.items():
            self.add_bucket(key, rows)

    def bucket(self, key: Key) -> Mapping[Signature, int]:
        """Read-only view of one bucket (empty when absent)."""
        return MappingProxyType(self._buckets.get(tuple(key), {}))

    def keys(self) -> List[Key]:
        """Bucket keys in ascending order."""
        return sorted(self._buckets)

    def __contains__(self, key) -> bool:
        return tuple(key) in self._buckets

    def __len__(self) -> int:
        return len(self._buckets)

    def __eq__(self, other) -> bool:
        if not isinstance(other, BucketStore):
            return NotImplemented
        return self.n == other.n and self._buckets == other._buckets

    def total_weight(self) -> int:
        """Sum of all weights, i.e. number of complete half fillings."""
        return sum(sum(rows.values()) for rows in self._buckets.values())

    def row_count(self) -> int:
        """Number of (key, signature) rows."""
        return sum(len(rows) for rows in self._buckets.values())

    def sorted(self) -> "BucketStore":
        """Copy with buckets and rows inserted in ascending order."""
        out = BucketStore(self.n)
        for key in self.keys():
            rows = self._buckets[key]
            out._buckets[key] = {sig: rows[sig] for sig in sorted(rows)}
        return out

    def digest(self) -> str:
        """
        BLAKE3 digest of the canonical serialisation.

        Buckets and rows are visited in sorted order, so content-equal stores
        digest equal regardless of how they were filled.

        Returns:
            str: hex digest
        """
        h = blake3()
        h.update(varu(self.n))
        h.update(varu(len(self._buckets)))
        for key in self.keys():
            rows = self._buckets[key]
            h.update(frame_ints(key))
            h.update(varu(len(rows)))
            for sig in sorted(rows):
                h.update(frame_ints(sig))
                h.update(varu(rows[sig]))
        return h.hexdigest()

    def summary(self) -> dict:
        return {
            "n": self.n,
            "buckets": len(self._buckets),
            "rows": self.row_count(),
            "total_weight": self.total_weight(),
        }

    def __repr__(self) -> str:
        return f"BucketStore(n={self.n}, buckets={len(self._buckets)}, rows={self.row_count()})"
