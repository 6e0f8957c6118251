# districts/config.py
# Run configuration: environment options, worker hints, snapshot defaults

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from .op.governor import DEFAULT_CHECK_EVERY

logger = logging.getLogger(__name__)

MB = 1024 * 1024
GB = MB * 1024

# First variable that parses wins; scheduler hints come after our own knob.
WORKER_HINTS = (
    "DISTRICTS_WORKERS",
    "SLURM_CPUS_PER_TASK",
    "SLURM_CPUS_ON_NODE",
    "PBS_NP",
    "OMP_NUM_THREADS",
)

RSS_BUDGET_VARS = (
    ("DISTRICTS_MAX_RSS_BYTES", 1),
    ("DISTRICTS_MAX_RSS_MB", MB),
    ("DISTRICTS_MAX_RSS_GB", GB),
)


def _env_int(env: Mapping[str, str], name: str, minimum: int = 1) -> Optional[int]:
    raw = env.get(name)
    if raw is None or not str(raw).strip():
        return None
    try:
        value = int(str(raw).strip())
    except ValueError:
        logger.warning("ignoring %s=%r (not an integer)", name, raw)
        return None
    if value < minimum:
        logger.warning("ignoring %s=%r (must be >= %d)", name, raw, minimum)
        return None
    return value


def _env_budget(env: Mapping[str, str]) -> Optional[int]:
    for name, multiplier in RSS_BUDGET_VARS:
        raw = env.get(name)
        if raw is None or not str(raw).strip():
            continue
        try:
            value = float(str(raw).strip())
        except ValueError:
            logger.warning("ignoring %s=%r (not a number)", name, raw)
            continue
        if value <= 0:
            logger.warning("ignoring %s=%r (must be > 0)", name, raw)
            continue
        return int(value * multiplier)
    return None


def detect_workers(env: Mapping[str, str] | None = None) -> tuple[int, str]:
    """Return (worker count, source) from env hints or the CPU count."""
    env = os.environ if env is None else env
    for name in WORKER_HINTS:
        value = _env_int(env, name)
        if value is not None:
            return value, name
    return max(os.cpu_count() or 1, 1), "cpu_count"


def default_snapshot_path(dataset_path: Path) -> Path:
    """<stem>_snapshot.npz next to the dataset archive."""
    dataset_path = Path(dataset_path)
    return dataset_path.parent / f"{dataset_path.stem}_snapshot.npz"


@dataclass(frozen=True)
class RunConfig:
    snapshot_path: Optional[Path] = None
    max_rss_bytes: Optional[int] = None
    check_every: int = DEFAULT_CHECK_EVERY
    workers: int = 1
    receipt_path: Optional[Path] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "RunConfig":
        env = os.environ if env is None else env
        snapshot = env.get("DISTRICTS_SNAPSHOT_PATH") or None
        receipt = env.get("DISTRICTS_RECEIPT_PATH") or None
        workers, source = detect_workers(env)
        logger.debug("workers=%d (hint: %s)", workers, source)
        return cls(
            snapshot_path=Path(snapshot) if snapshot else None,
            max_rss_bytes=_env_budget(env),
            check_every=_env_int(env, "DISTRICTS_CHECK_EVERY") or DEFAULT_CHECK_EVERY,
            workers=workers,
            receipt_path=Path(receipt) if receipt else None,
            log_level=(env.get("DISTRICTS_LOG_LEVEL") or "INFO").upper(),
        )

    def with_overrides(self, **changes) -> "RunConfig":
        """Copy with the given fields replaced; None values are skipped."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
