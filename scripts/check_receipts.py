#!/usr/bin/env python3
# scripts/check_receipts.py
# Compare two run receipt files written by count-districts --receipt

from __future__ import annotations
import json
import sys
from pathlib import Path

# Add project root to path
repo_root = Path(__file__).parent.parent
sys.path.insert(0, str(repo_root))

from districts.op.receipts import deep_diff

# fields that legitimately differ between a fresh run and its resume
RESUME_FIELDS = ("env", "mode", "enumerate")


def load_receipt(path: str) -> dict:
    with open(path) as f:
        return json.load(f)


def compare_receipts(a: dict, b: dict, ignore=()) -> list[str]:
    """
    Differences between two receipts, skipping top-level fields in `ignore`.
    """
    a = {k: v for k, v in a.items() if k not in ignore}
    b = {k: v for k, v in b.items() if k not in ignore}
    return deep_diff(a, b)


def main(argv=None) -> int:
    """
    Compare two receipt JSON files.

    Usage:
        python -m scripts.check_receipts [--resume] <a.json> <b.json>

    --resume skips RESUME_FIELDS, which a resumed run is expected to change.

    Exit codes:
        0: receipts match
        1: receipts differ or bad usage
    """
    args = list(sys.argv[1:] if argv is None else argv)
    ignore = ()
    if args and args[0] == "--resume":
        ignore = RESUME_FIELDS
        args = args[1:]
    if len(args) != 2:
        print("Usage: python -m scripts.check_receipts [--resume] <a.json> <b.json>")
        return 1

    file_a, file_b = args
    print("Comparing receipts:")
    print(f"  A: {file_a}")
    print(f"  B: {file_b}")

    diffs = compare_receipts(load_receipt(file_a), load_receipt(file_b), ignore)
    if not diffs:
        print("✓ RECEIPTS_MATCH")
        return 0

    print("\n✗ RECEIPTS_DIFFER")
    for diff in diffs[:10]:
        print(f"  {diff}")
    if len(diffs) > 10:
        print(f"  ... and {len(diffs) - 10} more differences")
    return 1


if __name__ == "__main__":
    sys.exit(main())
