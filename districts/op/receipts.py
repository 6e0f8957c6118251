# districts/op/receipts.py
# Run receipts: deterministic, timestamp-free records of each phase

from __future__ import annotations
import json
import platform
import sys
from dataclasses import dataclass, asdict, field
from importlib import metadata
from typing import Any, Dict, List, Optional
from .hash import hash_bytes


def _dist_version(name: str) -> str:
    try:
        return metadata.version(name)
    except metadata.PackageNotFoundError:
        return "unknown"


@dataclass
class EnvRc:
    """
    Environment fingerprint.

    Recorded so that two receipts that differ can be told apart as
    environment drift rather than nondeterministic execution.
    """
    platform: str
    endian: str
    py_version: str
    numpy_version: str
    blake3_version: str
    psutil_version: str
    build_flags_hash: str


def env_fingerprint() -> EnvRc:
    """
    Capture environment fingerprint.

    Returns:
        EnvRc: environment receipt
    """
    build_info = {
        "py_version": sys.version,
        "implementation": platform.python_implementation(),
        "version_info": list(sys.version_info),
    }
    flags = hash_bytes(json.dumps(build_info, sort_keys=True).encode())

    return EnvRc(
        platform=platform.platform(),
        endian=sys.byteorder,
        py_version=platform.python_version(),
        numpy_version=_dist_version("numpy"),
        blake3_version=_dist_version("blake3"),
        psutil_version=_dist_version("psutil"),
        build_flags_hash=flags,
    )


@dataclass
class EnumerateRc:
    """
    Phase 1 receipt.

    Counts are exact; states_expanded counts (mask, root) frontier entries
    visited, pruned counts placements rejected by the sealed-region test.
    """
    n: int
    roots: int
    workers: int
    states_expanded: int
    pruned: int
    buckets: int
    rows: int
    total_weight: int
    store_digest: str


@dataclass
class PairRc:
    key_left: List[int]
    key_right: List[int]
    rows_left: int
    rows_right: int
    factor: int
    subtotal: int


@dataclass
class MatchRc:
    """
    Phase 2 receipt.

    reflection names how the right half was obtained ("mirror" = same store
    read under reflection, "explicit" = a second store).
    """
    reflection: str
    pairs: List[PairRc]
    count: int


@dataclass
class RunRc:
    """
    Root receipt for one run.

    No timestamps or paths, so a fresh run and a resumed run on the same
    inputs agree on everything except mode and the enumerate section.
    """
    env: EnvRc
    mode: str                      # "fresh" | "resume"
    n: int
    dataset_version: str
    store_digest: str
    enumerate: Optional[EnumerateRc]
    match: MatchRc
    count: int
    notes: Dict[str, Any] = field(default_factory=dict)


def aggregate(run: dict | RunRc) -> dict:
    """
    Convert nested receipts (dataclasses or dicts) to JSON-serializable dict.

    Args:
        run: RunRc or dict containing receipts

    Returns:
        dict: plain representation
    """
    def to_plain(x: Any) -> Any:
        """Recursively convert dataclasses to dicts."""
        if hasattr(x, "__dataclass_fields__"):
            return {k: to_plain(v) for k, v in asdict(x).items()}
        if isinstance(x, dict):
            return {k: to_plain(v) for k, v in x.items()}
        if isinstance(x, (list, tuple)):
            return [to_plain(v) for v in x]
        return x

    return to_plain(run)


def deep_diff(a: dict, b: dict, path: str = "") -> list[str]:
    """
    Recursively find differences between two plain receipts.

    Args:
        a, b: dicts to compare
        path: current path for messages

    Returns:
        list of difference descriptions (empty when equal)
    """
    diffs = []

    a_keys = set(a.keys())
    b_keys = set(b.keys())

    if a_keys != b_keys:
        only_a = a_keys - b_keys
        only_b = b_keys - a_keys
        if only_a:
            diffs.append(f"{path}: keys only in A: {sorted(only_a)}")
        if only_b:
            diffs.append(f"{path}: keys only in B: {sorted(only_b)}")

    for key in sorted(a_keys & b_keys):
        new_path = f"{path}.{key}" if path else key
        val_a = a[key]
        val_b = b[key]

        if isinstance(val_a, dict) and isinstance(val_b, dict):
            diffs.extend(deep_diff(val_a, val_b, new_path))
        elif val_a != val_b:
            diffs.append(f"{new_path}: {val_a!r} != {val_b!r}")

    return diffs
