#!/usr/bin/env python3
# districts/op/match.py
# Matcher: join complementary buckets and count compatible district bijections

"""
A left filling with crossing signature s1 and a right filling with crossing
signature s2 combine into as many full partitions as there are bijections
between the districts of s1 and s2 that pair every j-type with a compatible
one. Compatibility implies the two populations sum to N, so bijections split
by population group and each group contributes the permanent of its 0/1
compatibility matrix.
"""

from __future__ import annotations
import concurrent.futures
import logging
import multiprocessing
import signal
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from ..log import ProgressTracker, StepTimer
from .buckets import BucketStore, Key, Signature, complement_key
from .errors import RunAborted
from .governor import CancelToken
from .receipts import MatchRc, PairRc

logger = logging.getLogger(__name__)

_WORKER_CONTEXT: dict = {}


@dataclass
class PairResult:
    key_left: Key
    key_right: Key
    rows_left: int
    rows_right: int
    factor: int
    subtotal: int

    @property
    def contribution(self) -> int:
        return self.factor * self.subtotal


@dataclass
class MatchResult:
    count: int
    pairs: List[PairResult]

    def receipt(self, reflection: str) -> MatchRc:
        return MatchRc(
            reflection=reflection,
            pairs=[
                PairRc(
                    key_left=list(p.key_left),
                    key_right=list(p.key_right),
                    rows_left=p.rows_left,
                    rows_right=p.rows_right,
                    factor=p.factor,
                    subtotal=p.subtotal,
                )
                for p in self.pairs
            ],
            count=self.count,
        )


def permanent(matrix: Sequence[Sequence[bool]]) -> int:
    """
    Permanent of a square 0/1 matrix (number of perfect matchings).

    Row-by-row DP over the set of used columns; matrices here are at most
    N/2 wide.
    """
    k = len(matrix)
    if k == 0:
        return 1
    counts: Dict[int, int] = {0: 1}
    for row in matrix:
        nxt: Dict[int, int] = {}
        for used, c in counts.items():
            for col in range(k):
                if row[col] and not used >> col & 1:
                    dst = used | 1 << col
                    nxt[dst] = nxt.get(dst, 0) + c
        if not nxt:
            return 0
        counts = nxt
    return sum(counts.values())


def bijections(s1: Signature, s2: Signature, dataset) -> int:
    """
    Number of compatible pairings between the districts of s1 and s2.

    Returns 0 when the population vectors are not complementary.
    """
    if len(s1) != len(s2):
        return 0
    n = dataset.n
    left_groups: Dict[int, List[int]] = {}
    right_groups: Dict[int, List[int]] = {}
    for a in s1:
        left_groups.setdefault(dataset.pop(a), []).append(a)
    for b in s2:
        right_groups.setdefault(n - dataset.pop(b), []).append(b)
    if {p: len(v) for p, v in left_groups.items()} != {p: len(v) for p, v in right_groups.items()}:
        return 0

    total = 1
    for p, lefts in left_groups.items():
        rights = right_groups[p]
        matrix = [[dataset.compatible(a, b) for b in rights] for a in lefts]
        total *= permanent(matrix)
        if total == 0:
            return 0
    return total


def _rows_by_jtype(rows: Sequence[Signature]) -> Dict[int, Set[int]]:
    index: Dict[int, Set[int]] = {}
    for r, sig in enumerate(rows):
        for j in sig:
            index.setdefault(j, set()).add(r)
    return index


def _check_token(token: Optional[CancelToken]) -> None:
    if token is not None and token.is_set():
        raise RunAborted("run cancelled")


def pair_subtotal(
    left: Mapping[Signature, int],
    right: Mapping[Signature, int],
    dataset,
    token: Optional[CancelToken] = None,
) -> int:
    """
    Sum over row pairs of w1 * w2 * bijections(s1, s2).

    Contract:
        - Right rows are indexed by j-type; a right row is visited only if
          it holds a partner for every distinct j-type of the left row.
        - Empty keys (no crossing district) pair every row with every row
          exactly once.
        - The cancel token is checked once per left row.

    Raises:
        RunAborted: token set
    """
    if not left or not right:
        return 0
    right_rows = list(right.keys())
    right_w = [right[s] for s in right_rows]

    if all(len(s) == 0 for s in left) and all(len(s) == 0 for s in right_rows):
        return sum(left.values()) * sum(right_w)

    by_j = _rows_by_jtype(right_rows)
    reach_cache: Dict[int, Set[int]] = {}

    def reach(j: int) -> Set[int]:
        rows = reach_cache.get(j)
        if rows is None:
            rows = set()
            for b in dataset.partners(j):
                rows |= by_j.get(b, set())
            reach_cache[j] = rows
        return rows

    subtotal = 0
    for s1, w1 in left.items():
        _check_token(token)
        candidates: Optional[Set[int]] = None
        for j in set(s1):
            rows = reach(j)
            candidates = set(rows) if candidates is None else candidates & rows
            if not candidates:
                break
        if not candidates:
            continue
        acc = 0
        for r in sorted(candidates):
            k = bijections(s1, right_rows[r], dataset)
            if k:
                acc += right_w[r] * k
        subtotal += w1 * acc
    return subtotal


def _init_worker(context: dict) -> None:
    global _WORKER_CONTEXT
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    _WORKER_CONTEXT = dict(context)


def _run_task(task: Tuple[Key, Key, int]) -> PairResult:
    ctx = _WORKER_CONTEXT
    right = ctx["right"] if ctx["right"] is not None else ctx["left"]
    return _solve(ctx["left"], right, ctx["dataset"], task, ctx["token"])


def _solve(
    left: BucketStore,
    right: BucketStore,
    dataset,
    task: Tuple[Key, Key, int],
    token: Optional[CancelToken] = None,
) -> PairResult:
    key_left, key_right, factor = task
    b1 = left.bucket(key_left)
    b2 = right.bucket(key_right)
    return PairResult(
        key_left=key_left,
        key_right=key_right,
        rows_left=len(b1),
        rows_right=len(b2),
        factor=factor,
        subtotal=pair_subtotal(b1, b2, dataset, token),
    )


def _check_n(store: BucketStore, dataset) -> None:
    if store.n != dataset.n:
        raise ValueError(f"store built for N={store.n}, dataset has N={dataset.n}")


def _pick_failure(errors: List[BaseException]) -> BaseException:
    for e in errors:
        if not isinstance(e, RunAborted):
            return e
    return errors[0]


def _execute_parallel(
    tasks: List[Tuple[Key, Key, int]],
    left: BucketStore,
    right: Optional[BucketStore],
    dataset,
    workers: int,
    token: Optional[CancelToken],
    progress: ProgressTracker,
) -> Dict[Tuple[Key, Key], PairResult]:
    results: Dict[Tuple[Key, Key], PairResult] = {}
    errors: List[BaseException] = []

    with multiprocessing.Manager() as manager:
        shared = manager.Event()
        context = {"left": left, "right": right, "dataset": dataset, "token": shared}
        executor = concurrent.futures.ProcessPoolExecutor(
            max_workers=min(workers, len(tasks)),
            initializer=_init_worker,
            initargs=(context,),
        )
        try:
            pending = {executor.submit(_run_task, task) for task in tasks}
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
                    res = fut.result()
                    results[(res.key_left, res.key_right)] = res
                    progress.update(1)
                if not errors and token is not None and token.is_set():
                    errors.append(RunAborted("run cancelled"))
                if errors and not shared.is_set():
                    shared.set()
                    for fut in pending:
                        fut.cancel()
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    if errors:
        raise _pick_failure(errors)
    return results


def _execute(
    tasks: List[Tuple[Key, Key, int]],
    left: BucketStore,
    right: Optional[BucketStore],
    dataset,
    workers: int,
    token: Optional[CancelToken] = None,
) -> MatchResult:
    _check_token(token)
    timer = StepTimer(logger)
    progress = ProgressTracker(len(tasks), logger, "match")
    right_store = right if right is not None else left

    # heaviest first so the long tail finishes early
    tasks = sorted(
        tasks,
        key=lambda t: (-len(left.bucket(t[0])) * len(right_store.bucket(t[1])), t[0], t[1]),
    )

    if workers <= 1 or len(tasks) <= 1:
        results: Dict[Tuple[Key, Key], PairResult] = {}
        for task in tasks:
            _check_token(token)
            res = _solve(left, right_store, dataset, task, token)
            results[(res.key_left, res.key_right)] = res
            progress.update(1)
    else:
        results = _execute_parallel(tasks, left, right, dataset, workers, token, progress)

    pairs = [results[k] for k in sorted(results)]
    count = sum(p.contribution for p in pairs)
    timer.info("matching done: pairs=%d count=%d", len(pairs), count)
    return MatchResult(count=count, pairs=pairs)


def match_stores(
    left: BucketStore,
    right: BucketStore,
    dataset,
    workers: int = 1,
    token: Optional[CancelToken] = None,
) -> MatchResult:
    """
    General two-store matching.

    One task per left bucket whose complement exists in the right store;
    partial sums are reduced once at the end.

    Args:
        left, right: bucket stores of the two halves
        dataset: CompatDataset supplying the compatibility relation
        workers: process count (1 = in-process)
        token: cancel token checked between tasks and per left row

    Returns:
        MatchResult

    Raises:
        RunAborted: token set before matching finished
    """
    _check_n(left, dataset)
    _check_n(right, dataset)
    tasks = []
    for key in left.keys():
        comp = complement_key(key, dataset.n)
        if comp in right:
            tasks.append((key, comp, 1))
    if right is left:
        return _execute(tasks, left, None, dataset, workers, token)
    return _execute(tasks, left, right, dataset, workers, token)


def match_mirrored(
    store: BucketStore,
    dataset,
    workers: int = 1,
    token: Optional[CancelToken] = None,
) -> MatchResult:
    """
    Match a store against its own mirror image.

    The right half is the reflection of the left half across the cut, so it
    has the same buckets. Each unordered pair of complementary buckets is
    solved once; a pair of distinct buckets counts twice.

    Returns:
        MatchResult equal in count to match_stores(store, store, dataset)

    Raises:
        RunAborted: token set before matching finished
    """
    _check_n(store, dataset)
    tasks = []
    for key in store.keys():
        comp = complement_key(key, dataset.n)
        if comp not in store or comp < key:
            continue
        tasks.append((key, comp, 1 if comp == key else 2))
    return _execute(tasks, store, None, dataset, workers, token)
