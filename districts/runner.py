#!/usr/bin/env python3
# districts/runner.py
# Run controller: load -> enumerate (governed) -> snapshot -> match, or resume from a snapshot

"""
Fresh:   dataset -> enumerate_half -> [save_snapshot] -> match_mirrored -> count
Resume:  dataset -> load_snapshot -> verify_snapshot -> match_mirrored -> count

A snapshot is only ever written after phase 1 has completed. Phase 2 has no
internal checkpoint; a resumed run always re-derives the full matching sum.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import RunConfig
from .io.load_dataset import load_dataset
from .io.save import write_json
from .io.snapshot import REFLECTION_MIRROR, load_snapshot, save_snapshot, verify_snapshot
from .log import StepTimer
from .op.buckets import BucketStore
from .op.enumerate import run_enumeration
from .op.governor import CancelToken, MemoryGovernor
from .op.match import match_mirrored
from .op.receipts import RunRc, aggregate, env_fingerprint

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    count: int
    store: BucketStore
    receipt: RunRc


def make_governor(config: RunConfig, token: Optional[CancelToken] = None) -> MemoryGovernor:
    return MemoryGovernor(
        ceiling_bytes=config.max_rss_bytes,
        check_every=config.check_every,
        token=token,
    )


def _finish(result: RunResult, config: RunConfig) -> RunResult:
    if config.receipt_path is not None:
        write_json(config.receipt_path, aggregate(result.receipt))
        logger.info("receipt written: %s", config.receipt_path)
    return result


def run_fresh(
    dataset_path: str | Path,
    config: RunConfig = RunConfig(),
    token: Optional[CancelToken] = None,
) -> RunResult:
    """
    Both phases in one process.

    Args:
        dataset_path: compatibility archive
        config: run options; snapshot_path None skips the snapshot
        token: cancel token shared with signal handlers

    Returns:
        RunResult

    Raises:
        DatasetLoadError, MemoryExceeded, RunAborted, SnapshotIOError
    """
    timer = StepTimer(logger)
    dataset = load_dataset(str(dataset_path))
    timer.info("dataset ready: %s", dataset.summary())

    governor = make_governor(config, token)
    store, enum_rc = run_enumeration(dataset, governor, workers=config.workers)

    if config.snapshot_path is not None:
        save_snapshot(config.snapshot_path, store, dataset.version, REFLECTION_MIRROR)

    match = match_mirrored(store, dataset, workers=config.workers, token=token)
    timer.info("count=%d", match.count)

    receipt = RunRc(
        env=env_fingerprint(),
        mode="fresh",
        n=dataset.n,
        dataset_version=dataset.version,
        store_digest=enum_rc.store_digest,
        enumerate=enum_rc,
        match=match.receipt(REFLECTION_MIRROR),
        count=match.count,
        notes=store.summary(),
    )
    return _finish(RunResult(count=match.count, store=store, receipt=receipt), config)


def run_resume(
    dataset_path: str | Path,
    snapshot_path: str | Path,
    config: RunConfig = RunConfig(),
    token: Optional[CancelToken] = None,
) -> RunResult:
    """
    Phase 2 only, from a snapshot written by an earlier fresh run.

    Raises:
        DatasetLoadError, RunAborted, SnapshotIOError, VersionMismatch
    """
    timer = StepTimer(logger)
    dataset = load_dataset(str(dataset_path))
    snapshot = load_snapshot(snapshot_path)
    verify_snapshot(snapshot, dataset, REFLECTION_MIRROR)
    store = snapshot.store
    timer.info("resuming from %s (phase 1 skipped)", snapshot_path)

    match = match_mirrored(store, dataset, workers=config.workers, token=token)
    timer.info("count=%d", match.count)

    receipt = RunRc(
        env=env_fingerprint(),
        mode="resume",
        n=dataset.n,
        dataset_version=dataset.version,
        store_digest=snapshot.store_digest,
        enumerate=None,
        match=match.receipt(REFLECTION_MIRROR),
        count=match.count,
        notes=store.summary(),
    )
    return _finish(RunResult(count=match.count, store=store, receipt=receipt), config)
