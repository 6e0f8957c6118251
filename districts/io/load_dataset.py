# districts/io/load_dataset.py
# Compatibility dataset loader: placement CSR, j-type populations, compat relation

from __future__ import annotations
import logging
import os
import zipfile
from typing import Dict, FrozenSet, List, Optional, Tuple
import numpy as np
from ..op.bitgrid import half_cells, half_mask
from ..op.errors import DatasetLoadError
from ..op.hash import hash_arrays

logger = logging.getLogger(__name__)

Placement = Tuple[int, int, int]   # (mask, pop, j)

REQUIRED_MEMBERS = (
    "N", "M", "pre_masks", "pre_pops", "pre_jidx", "pre_offsets",
    "jbt_ref_pop", "meta_compat_pops",
)
MAX_N = 10


class CompatDataset:
    """
    Immutable, validated view of a compatibility archive.

    Contract:
        placements(root) lists (mask, pop, j) for every legal placement whose
        lowest cell is root. partners(j) is the set of j-types that j may be
        joined to across the cut; the relation is symmetric and only links
        j-types whose populations sum to N.
    """

    def __init__(
        self,
        n: int,
        placements: List[List[Placement]],
        jbt_pop: List[int],
        partners: List[FrozenSet[int]],
        version: str,
        comps: Optional[np.ndarray] = None,
        path: Optional[str] = None,
    ) -> None:
        self.n = n
        self.m = len(jbt_pop)
        self._placements = placements
        self._jbt_pop = jbt_pop
        self._partners = partners
        self.version = version
        self.comps = comps
        self.path = path

    @property
    def roots(self) -> int:
        return len(self._placements)

    def placements(self, root: int) -> List[Placement]:
        return self._placements[root]

    def pop(self, j: int) -> int:
        return self._jbt_pop[j]

    def partners(self, j: int) -> FrozenSet[int]:
        return self._partners[j]

    def compatible(self, a: int, b: int) -> bool:
        return b in self._partners[a]

    def signature_key(self, signature) -> Tuple[int, ...]:
        """Sorted population vector of a boundary signature."""
        return tuple(sorted(self._jbt_pop[j] for j in signature))

    def summary(self) -> dict:
        """Counts for logs and receipts."""
        jtypes_by_pop: Dict[int, int] = {}
        for p in self._jbt_pop:
            jtypes_by_pop[p] = jtypes_by_pop.get(p, 0) + 1
        out = {
            "n": self.n,
            "m": self.m,
            "roots": self.roots,
            "placements": sum(len(p) for p in self._placements),
            "complete_placements": sum(
                1 for ps in self._placements for (_, pop, _) in ps if pop == self.n
            ),
            "jtypes_by_pop": {str(k): v for k, v in sorted(jtypes_by_pop.items())},
            "compat_pairs": sum(len(s) for s in self._partners) // 2,
            "version": self.version,
        }
        if self.comps is not None:
            out["max_components"] = int(np.count_nonzero(self.comps, axis=1).max(initial=0))
        return out


def _scalar(arrays: Dict[str, np.ndarray], name: str) -> int:
    a = arrays[name]
    if a.size != 1 or a.dtype.kind not in "iu":
        raise DatasetLoadError(f"{name} must be a single integer, got {a.dtype} {a.shape}")
    return int(a.reshape(-1)[0])


def _read_archive(path: str) -> Dict[str, np.ndarray]:
    if not os.path.isfile(path):
        raise DatasetLoadError(f"dataset not found: {path}")
    try:
        with np.load(path, allow_pickle=False) as npz:
            return {name: npz[name] for name in npz.files}
    except (OSError, ValueError, zipfile.BadZipFile, EOFError) as e:
        raise DatasetLoadError(f"cannot read dataset {path}: {e}") from e


def _build_partners(
    arrays: Dict[str, np.ndarray], n: int, jbt_pop: List[int]
) -> Tuple[List[FrozenSet[int]], Dict[str, np.ndarray]]:
    """
    Symmetrised compatibility relation from the per-population tables.

    Returns:
        (partners per j-type, the compat members consumed)
    """
    m = len(jbt_pop)
    consumed = {"meta_compat_pops": arrays["meta_compat_pops"]}
    compat_pops = [int(p) for p in arrays["meta_compat_pops"].reshape(-1).tolist()]
    sets: List[set] = [set() for _ in range(m)]

    for p in compat_pops:
        if not 1 <= p <= n - 1:
            raise DatasetLoadError(f"meta_compat_pops lists population {p} outside 1..{n - 1}")
        k1_name = f"compat_p{p}_key1"
        k2_name = f"compat_p{p}_key2"
        if k1_name not in arrays or k2_name not in arrays:
            raise DatasetLoadError(f"missing compatibility table for population {p}")
        k1 = arrays[k1_name].reshape(-1)
        k2 = arrays[k2_name].reshape(-1)
        consumed[k1_name] = arrays[k1_name]
        consumed[k2_name] = arrays[k2_name]
        if k1.shape != k2.shape:
            raise DatasetLoadError(f"{k1_name} and {k2_name} differ in length")
        for a, b in zip(k1.tolist(), k2.tolist()):
            if not (0 <= a < m and 0 <= b < m):
                raise DatasetLoadError(f"compat_p{p} pair ({a}, {b}) outside 0..{m - 1}")
            if jbt_pop[a] != p or jbt_pop[b] != n - p:
                raise DatasetLoadError(
                    f"compat_p{p} pair ({a}, {b}) has populations "
                    f"({jbt_pop[a]}, {jbt_pop[b]}), expected ({p}, {n - p})"
                )
            sets[a].add(b)
            sets[b].add(a)

    covered = set(compat_pops) | {n - p for p in compat_pops}
    missing = [p for p in range(1, n) if p not in covered]
    if missing and any(jbt_pop[j] in missing for j in range(m)):
        raise DatasetLoadError(f"no compatibility table for populations {missing}")

    return [frozenset(s) for s in sets], consumed


def load_dataset(path: str) -> CompatDataset:
    """
    Read, validate and index a compatibility archive.

    Args:
        path: .npz file

    Returns:
        CompatDataset

    Raises:
        DatasetLoadError: missing file, unreadable archive or any failed
            structural check (lengths, offsets, roots, populations, j-types,
            compatibility tables)
    """
    arrays = _read_archive(path)
    missing = [name for name in REQUIRED_MEMBERS if name not in arrays]
    if missing:
        raise DatasetLoadError(f"dataset {path} lacks members {missing}")

    n = _scalar(arrays, "N")
    m = _scalar(arrays, "M")
    if n < 2 or n > MAX_N or n % 2:
        raise DatasetLoadError(f"N must be even and in 2..{MAX_N}, got {n}")
    if m < 0:
        raise DatasetLoadError(f"M must be non-negative, got {m}")

    masks = arrays["pre_masks"].reshape(-1)
    pops = arrays["pre_pops"].reshape(-1)
    jidx = arrays["pre_jidx"].reshape(-1)
    offsets = arrays["pre_offsets"].reshape(-1)
    jpop_arr = arrays["jbt_ref_pop"].reshape(-1)

    nnz = masks.shape[0]
    if pops.shape[0] != nnz or jidx.shape[0] != nnz:
        raise DatasetLoadError(
            f"pre_* arrays have mismatched lengths: masks={nnz}, "
            f"pops={pops.shape[0]}, jidx={jidx.shape[0]}"
        )
    roots = half_cells(n)
    if offsets.shape[0] != roots + 1:
        raise DatasetLoadError(
            f"pre_offsets has {offsets.shape[0]} entries, expected {roots + 1} for N={n}"
        )
    if offsets[0] != 0 or np.any(np.diff(offsets) < 0):
        raise DatasetLoadError("pre_offsets must start at 0 and be non-decreasing")
    if int(offsets[-1]) != nnz:
        raise DatasetLoadError(f"pre_offsets last={int(offsets[-1])} does not equal nnz={nnz}")
    if jpop_arr.shape[0] != m:
        raise DatasetLoadError(f"jbt_ref_pop has len {jpop_arr.shape[0]}, expected M={m}")

    jbt_pop = [int(p) for p in jpop_arr.tolist()]
    full = half_mask(n)
    off = [int(o) for o in offsets.tolist()]
    mask_list = [int(x) for x in masks.tolist()]
    pop_list = [int(x) for x in pops.tolist()]
    j_list = [int(x) for x in jidx.tolist()]

    placements: List[List[Placement]] = []
    for root in range(roots):
        row = []
        for i in range(off[root], off[root + 1]):
            mask, pop, j = mask_list[i], pop_list[i], j_list[i]
            if mask == 0 or mask & ~full:
                raise DatasetLoadError(f"placement {i} mask {mask:#x} is not inside the half")
            if (mask & -mask).bit_length() - 1 != root:
                raise DatasetLoadError(f"placement {i} is listed under root {root} but starts elsewhere")
            if not 1 <= pop <= n:
                raise DatasetLoadError(f"placement {i} has population {pop} outside 1..{n}")
            if pop < n:
                if not 0 <= j < m:
                    raise DatasetLoadError(f"placement {i} j-type {j} outside 0..{m - 1}")
                if jbt_pop[j] != pop:
                    raise DatasetLoadError(
                        f"placement {i} has population {pop} but j-type {j} has {jbt_pop[j]}"
                    )
            row.append((mask, pop, j))
        placements.append(row)

    partners, consumed = _build_partners(arrays, n, jbt_pop)

    comps = arrays.get("jbt_ref_comps")
    if comps is not None and comps.size:
        if comps.ndim != 2 or comps.shape[0] != m:
            raise DatasetLoadError(f"jbt_ref_comps has shape {comps.shape}, expected ({m}, k)")
        consumed["jbt_ref_comps"] = comps
    else:
        comps = None

    for name in ("N", "M", "pre_masks", "pre_pops", "pre_jidx", "pre_offsets", "jbt_ref_pop"):
        consumed[name] = arrays[name]
    version = hash_arrays(consumed)

    ds = CompatDataset(n, placements, jbt_pop, partners, version, comps=comps, path=path)
    logger.info(
        "loaded dataset %s: N=%d M=%d placements=%d version=%s",
        path, n, m, nnz, version[:16],
    )
    return ds
