#!/usr/bin/env python3
# districts/op/enumerate.py
# Half-grid enumerator: root-ordered frontier walk with (mask, signature) memoisation

"""
Every filling of the left half is built district by district. The lowest
uncovered cell (the root) must be the lowest cell of the next district, so
each state is just the covered-cell mask plus the boundary signature of the
districts that will cross the cut. Identical states merge by adding weights.
"""

from __future__ import annotations
import bisect
import concurrent.futures
import logging
import multiprocessing
import signal
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..log import ProgressTracker, StepTimer
from .bitgrid import has_sealed_remainder, next_root
from .buckets import BucketStore, Signature
from .errors import DistrictsError, MemoryExceeded, RunAborted
from .governor import MemoryGovernor
from .receipts import EnumerateRc

logger = logging.getLogger(__name__)

Layer = Dict[int, Dict[Signature, int]]

_WORKER_CONTEXT: dict = {}


@dataclass
class WalkStats:
    states_expanded: int = 0
    pruned: int = 0

    def add(self, other: "WalkStats") -> None:
        self.states_expanded += other.states_expanded
        self.pruned += other.pruned


def _with_jtype(signature: Signature, j: int) -> Signature:
    sig = list(signature)
    bisect.insort(sig, j)
    return tuple(sig)


def walk(
    dataset,
    governor: Optional[MemoryGovernor] = None,
    seeds: Optional[Sequence[int]] = None,
    label: str = "enumerate",
) -> Tuple[BucketStore, WalkStats]:
    """
    Enumerate every filling of the half reachable from the given root-0 seeds.

    Contract:
        - Roots are visited in ascending bit order; a placement of root r is
          applied only to masks whose lowest uncovered bit is r.
        - A placement is pruned when it leaves a sealed region whose size is
          not a multiple of N. The test is skipped for roots in the cut
          column, where every region touches the cut.
        - pop == N closes the district; pop < N adds its j-type to the
          signature.
        - When the half is full the signature lands in the bucket keyed by
          its sorted population vector.

    Args:
        dataset: CompatDataset
        governor: optional MemoryGovernor ticked once per expanded state
        seeds: indices into placements(0); None means all of them
        label: progress log label

    Returns:
        (BucketStore, WalkStats)

    Raises:
        MemoryExceeded, RunAborted: from the governor; nothing is returned
    """
    n = dataset.n
    roots = dataset.roots
    last_column_start = roots - n
    store = BucketStore(n)
    stats = WalkStats()
    layers: Dict[int, Layer] = {0: {0: {(): 1}}}
    progress = ProgressTracker(roots, logger, label)

    for root in range(roots):
        layer = layers.pop(root, None)
        if not layer:
            progress.update(1, f"root={root} masks=0")
            continue

        placements = dataset.placements(root)
        if root == 0 and seeds is not None:
            placements = [placements[i] for i in seeds]
        check_sealed = root < last_column_start

        for mask, rows in layer.items():
            stats.states_expanded += len(rows)
            if governor is not None:
                governor.tick(len(rows))
            for pmask, pop, j in placements:
                if pmask & mask:
                    continue
                covered = mask | pmask
                if check_sealed and has_sealed_remainder(covered, n):
                    stats.pruned += 1
                    continue
                nxt = next_root(covered, n)
                if nxt is None:
                    for sig, w in rows.items():
                        out = sig if pop == n else _with_jtype(sig, j)
                        store.add(dataset.signature_key(out), out, w)
                    continue
                dest_layer = layers.get(nxt)
                if dest_layer is None:
                    dest_layer = layers[nxt] = {}
                dest = dest_layer.get(covered)
                if dest is None:
                    dest = dest_layer[covered] = {}
                for sig, w in rows.items():
                    out = sig if pop == n else _with_jtype(sig, j)
                    dest[out] = dest.get(out, 0) + w

        if governor is not None:
            governor.checkpoint(f"{label} root {root}")
        progress.update(1, f"root={root} masks={len(layer)} pending={sum(len(l) for l in layers.values())}")
        del layer

    return store, stats


def seed_slices(count: int, workers: int) -> List[List[int]]:
    """
    Round-robin split of root-0 placements into disjoint, non-empty slices.
    """
    k = max(1, min(workers, count))
    return [list(range(i, count, k)) for i in range(k)]


def _init_worker(context: dict) -> None:
    global _WORKER_CONTEXT
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    ctx = dict(context)
    ctx["governor"] = MemoryGovernor(**ctx.pop("governor_params"))
    _WORKER_CONTEXT = ctx


def _walk_slice(index: int, seeds: List[int]) -> Tuple[int, BucketStore, WalkStats, int]:
    ctx = _WORKER_CONTEXT
    governor = ctx["governor"]
    store, stats = walk(ctx["dataset"], governor, seeds, label=f"enumerate[{index}]")
    return index, store, stats, governor.peak_rss


def _pick_failure(errors: List[BaseException]) -> BaseException:
    for e in errors:
        if isinstance(e, MemoryExceeded):
            return e
    for e in errors:
        if not isinstance(e, RunAborted):
            return e
    return errors[0]


def _walk_parallel(
    dataset, governor: MemoryGovernor, slices: List[List[int]]
) -> Tuple[BucketStore, WalkStats]:
    results: Dict[int, Tuple[BucketStore, WalkStats]] = {}
    errors: List[BaseException] = []

    with multiprocessing.Manager() as manager:
        shared = manager.Event()
        context = {
            "dataset": dataset,
            "governor_params": governor.worker_params(shared),
        }
        executor = concurrent.futures.ProcessPoolExecutor(
            max_workers=len(slices),
            initializer=_init_worker,
            initargs=(context,),
        )
        try:
            pending = {executor.submit(_walk_slice, i, s) for i, s in enumerate(slices)}
            while pending:
                done, pending = concurrent.futures.wait(
                    pending, timeout=0.5, return_when=concurrent.futures.FIRST_EXCEPTION
                )
                for fut in done:
                    if fut.cancelled():
                        continue
                    exc = fut.exception()
                    if exc is not None:
                        errors.append(exc)
                        continue
                    index, store, stats, peak = fut.result()
                    results[index] = (store, stats)
                    governor.note_peak(peak)
                if not errors:
                    try:
                        governor.check()
                    except DistrictsError as e:
                        errors.append(e)
                if errors and not shared.is_set():
                    shared.set()
                    for fut in pending:
                        fut.cancel()
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    if errors:
        raise _pick_failure(errors)

    merged = BucketStore(dataset.n)
    total = WalkStats()
    for index in range(len(slices)):
        store, stats = results[index]
        merged.merge(store)
        total.add(stats)
    return merged, total


def run_enumeration(
    dataset, governor: Optional[MemoryGovernor] = None, workers: int = 1
) -> Tuple[BucketStore, EnumerateRc]:
    """
    Phase 1 with its receipt.

    Args:
        dataset: CompatDataset
        governor: memory governor (a ceiling-free one is created if None)
        workers: number of seed slices walked in separate processes

    Returns:
        (BucketStore in canonical order, EnumerateRc)
    """
    governor = governor if governor is not None else MemoryGovernor()
    timer = StepTimer(logger)
    slices = seed_slices(len(dataset.placements(0)), workers)

    if len(slices) <= 1:
        store, stats = walk(dataset, governor)
    else:
        logger.info("enumerating with %d worker processes", len(slices))
        store, stats = _walk_parallel(dataset, governor, slices)

    store = store.sorted()
    receipt = EnumerateRc(
        n=dataset.n,
        roots=dataset.roots,
        workers=len(slices),
        states_expanded=stats.states_expanded,
        pruned=stats.pruned,
        buckets=len(store),
        rows=store.row_count(),
        total_weight=store.total_weight(),
        store_digest=store.digest(),
    )
    timer.info(
        "enumeration done: buckets=%d rows=%d total_weight=%d peak_rss=%.3f GiB",
        receipt.buckets, receipt.rows, receipt.total_weight, governor.peak_rss / 1024 ** 3,
    )
    return store, receipt


def enumerate_half(
    dataset, governor: Optional[MemoryGovernor] = None, workers: int = 1
) -> BucketStore:
    """
    Bucket store of every legal filling of the left half.

    Raises:
        MemoryExceeded: governor ceiling breached (partial store discarded)
        RunAborted: cancel token set
    """
    store, _ = run_enumeration(dataset, governor, workers)
    return store
