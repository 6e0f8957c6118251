#!/usr/bin/env python3
"""
Small-N compatibility datasets and brute-force counters for the tests.

Datasets are derived from first principles, not from the engine:
- a placement is a set of left-half cells that is either a connected
  N-omino (a complete district) or fewer than N cells whose every
  4-connected component touches the cut column (the left part of a
  district that continues on the right);
- the j-type of a partial placement is (population, sorted cut-row masks of
  its components);
- two partial placements with populations summing to N are compatible when
  their components form one connected graph across the cut (a left and a
  right component are adjacent when they share a cut row).
The right half is the mirror image of the left half, so one table serves
both sides.
"""

from __future__ import annotations
import itertools
from collections import Counter
from functools import lru_cache
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple
import numpy as np

Cell = Tuple[int, int]


def _neighbours(c: Cell):
    x, y = c
    return ((x - 1, y), (x + 1, y), (x, y - 1), (x, y + 1))


def cell_components(cells) -> List[FrozenSet[Cell]]:
    """4-connected components of a cell set (BFS)."""
    todo = set(cells)
    out = []
    while todo:
        start = todo.pop()
        comp = {start}
        stack = [start]
        while stack:
            c = stack.pop()
            for nb in _neighbours(c):
                if nb in todo:
                    todo.remove(nb)
                    comp.add(nb)
                    stack.append(nb)
        out.append(frozenset(comp))
    return out


def _bit(c: Cell, n: int) -> int:
    return c[0] * n + c[1]


def _row_mask(comp, cut: int) -> int:
    m = 0
    for x, y in comp:
        if x == cut:
            m |= 1 << y
    return m


@lru_cache(maxsize=None)
def legal_placements(n: int) -> Tuple[Tuple[int, int, Optional[tuple]], ...]:
    """
    Every legal left-half placement as (mask, pop, jkey); jkey None for pop n.
    """
    cut = n // 2 - 1
    cells = [(x, y) for x in range(n // 2) for y in range(n)]
    out = []
    for size in range(1, n + 1):
        for combo in itertools.combinations(cells, size):
            comps = cell_components(combo)
            mask = sum(1 << _bit(c, n) for c in combo)
            if size == n:
                if len(comps) == 1:
                    out.append((mask, n, None))
                continue
            masks = [_row_mask(comp, cut) for comp in comps]
            if all(masks):
                out.append((mask, size, (size, tuple(sorted(masks)))))
    return tuple(out)


def _joinable(left_rows, right_rows) -> bool:
    nodes = [("L", i) for i in range(len(left_rows))] + [("R", i) for i in range(len(right_rows))]
    seen = {nodes[0]}
    stack = [nodes[0]]
    while stack:
        side, i = stack.pop()
        if side == "L":
            nxt = [("R", k) for k, r in enumerate(right_rows) if r & left_rows[i]]
        else:
            nxt = [("L", k) for k, r in enumerate(left_rows) if r & right_rows[i]]
        for node in nxt:
            if node not in seen:
                seen.add(node)
                stack.append(node)
    return len(seen) == len(nodes)


def dataset_arrays(n: int, compat_upto: Optional[int] = None) -> Dict[str, np.ndarray]:
    """
    Archive members for an N x N grid.

    Compatibility tables are written for populations 1..compat_upto only
    (default N/2); the loader fills in the mirrored populations.
    """
    placements = legal_placements(n)
    jkeys = sorted({jk for _, _, jk in placements if jk is not None})
    jindex = {jk: i for i, jk in enumerate(jkeys)}

    def root(mask):
        return (mask & -mask).bit_length() - 1

    ordered = sorted(placements, key=lambda p: (root(p[0]), p[0]))
    roots = n * (n // 2)
    offsets = np.zeros(roots + 1, dtype=np.int64)
    for mask, _, _ in ordered:
        offsets[root(mask) + 1] += 1
    offsets = np.cumsum(offsets).astype(np.int64)

    arrays: Dict[str, np.ndarray] = {
        "N": np.array([n], dtype=np.int32),
        "M": np.array([len(jkeys)], dtype=np.int32),
        "pre_masks": np.array([p[0] for p in ordered], dtype=np.uint64),
        "pre_pops": np.array([p[1] for p in ordered], dtype=np.uint8),
        "pre_jidx": np.array([jindex[p[2]] if p[2] is not None else 0 for p in ordered], dtype=np.uint32),
        "pre_offsets": offsets,
        "jbt_ref_pop": np.array([jk[0] for jk in jkeys], dtype=np.int32),
    }

    width = max([3] + [len(jk[1]) for jk in jkeys])
    comps = np.zeros((len(jkeys), width), dtype=np.uint16)
    for i, jk in enumerate(jkeys):
        comps[i, :len(jk[1])] = jk[1]
    arrays["jbt_ref_comps"] = comps

    upto = n // 2 if compat_upto is None else compat_upto
    pops = list(range(1, upto + 1))
    arrays["meta_compat_pops"] = np.array(pops, dtype=np.int32)
    for p in pops:
        k1, k2 = [], []
        for a, ja in enumerate(jkeys):
            if ja[0] != p:
                continue
            for b, jb in enumerate(jkeys):
                if jb[0] == n - p and _joinable(ja[1], jb[1]):
                    k1.append(a)
                    k2.append(b)
        arrays[f"compat_p{p}_key1"] = np.array(k1, dtype=np.int32)
        arrays[f"compat_p{p}_key2"] = np.array(k2, dtype=np.int32)
    return arrays


def write_dataset(path, n: int, **overrides) -> Path:
    """
    Write an N x N dataset to path; overrides replace members, None drops one.
    """
    arrays = dataset_arrays(n)
    for name, value in overrides.items():
        if value is None:
            arrays.pop(name, None)
        else:
            arrays[name] = value
    path = Path(path)
    np.savez(path, **arrays)
    return path


def count_partitions(n: int) -> int:
    """
    Partitions of the full n x n grid into connected n-ominoes (brute force).

    Each step grows every connected n-cell set that contains the lowest free
    cell and otherwise uses only free cells.
    """
    all_cells = frozenset((x, y) for x in range(n) for y in range(n))

    def grow(free: FrozenSet[Cell], start: Cell):
        shapes = {frozenset([start])}
        for _ in range(n - 1):
            bigger = set()
            for s in shapes:
                for c in s:
                    for nb in _neighbours(c):
                        if nb in free and nb not in s:
                            bigger.add(s | {nb})
            shapes = bigger
        return shapes

    @lru_cache(maxsize=None)
    def count(free: FrozenSet[Cell]) -> int:
        if not free:
            return 1
        start = min(free)
        return sum(count(free - shape) for shape in grow(free, start))

    return count(all_cells)


def half_fillings_by_key(n: int) -> Counter:
    """
    Fillings of the left half by legal placements, counted per sorted vector
    of partial populations (plain exact cover, no pruning).
    """
    by_low: Dict[int, List[Tuple[int, int]]] = {}
    for mask, pop, _ in legal_placements(n):
        low = (mask & -mask).bit_length() - 1
        by_low.setdefault(low, []).append((mask, pop))
    full = (1 << (n * (n // 2))) - 1

    @lru_cache(maxsize=None)
    def fill(covered: int) -> Tuple[Tuple[Tuple[int, ...], int], ...]:
        if covered == full:
            return (((), 1),)
        free = full & ~covered
        low = (free & -free).bit_length() - 1
        acc: Counter = Counter()
        for mask, pop in by_low.get(low, []):
            if mask & covered:
                continue
            for key, c in fill(covered | mask):
                if pop < n:
                    key = tuple(sorted(key + (pop,)))
                acc[key] += c
        return tuple(sorted(acc.items()))

    return Counter(dict(fill(0)))
