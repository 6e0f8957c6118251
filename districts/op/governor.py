# districts/op/governor.py
# Memory governor: state-count cadence RSS sampling with a cooperative cancel token

from __future__ import annotations
import logging
import os
import threading
from typing import Optional, Protocol
import psutil
from .errors import MemoryExceeded, RunAborted

logger = logging.getLogger(__name__)

GIB = 1024 ** 3
DEFAULT_CHECK_EVERY = 4096


class CancelToken(Protocol):
    def is_set(self) -> bool: ...
    def set(self) -> None: ...


def ceiling_from_gb(value: Optional[float]) -> Optional[int]:
    """
    Convert a gigabyte ceiling to bytes; None or <= 0 means no ceiling.
    """
    if value is None or value <= 0:
        return None
    return int(value * GIB)


class MemoryGovernor:
    """
    Process-tree resident memory guard.

    Contract:
        - tick(count) advances a processed-state counter; every check_every
          states a check runs. Cadence never depends on wall-clock time.
        - A check first honours the cancel token (RunAborted), then samples
          RSS of root_pid and, optionally, its descendants.
        - A sample above the ceiling sets the token, so sibling workers stop
          at their next check, and raises MemoryExceeded.
        - No retries: a breach is final for the run.
    """

    def __init__(
        self,
        ceiling_bytes: Optional[int] = None,
        check_every: int = DEFAULT_CHECK_EVERY,
        token: Optional[CancelToken] = None,
        root_pid: Optional[int] = None,
        include_children: bool = True,
    ) -> None:
        if check_every < 1:
            raise ValueError(f"check_every must be >= 1, got {check_every}")
        self.ceiling_bytes = ceiling_bytes
        self.check_every = int(check_every)
        self.token: CancelToken = token if token is not None else threading.Event()
        self.root_pid = root_pid if root_pid is not None else os.getpid()
        self.include_children = include_children
        self._proc = psutil.Process(self.root_pid)
        self._since_check = 0
        self.states = 0
        self.checks = 0
        self.last_rss = 0
        self.peak_rss = 0

    def worker_params(self, token: CancelToken) -> dict:
        """Constructor arguments for a governor in a worker process."""
        return {
            "ceiling_bytes": self.ceiling_bytes,
            "check_every": self.check_every,
            "token": token,
            "root_pid": self.root_pid,
            "include_children": self.include_children,
        }

    def sample(self) -> int:
        """Current RSS in bytes of the governed process tree."""
        rss = self._proc.memory_info().rss
        if self.include_children:
            for child in self._proc.children(recursive=True):
                try:
                    rss += child.memory_info().rss
                except (psutil.NoSuchProcess, psutil.AccessDenied):
                    continue
        self.last_rss = rss
        self.note_peak(rss)
        return rss

    def note_peak(self, rss: int) -> None:
        if rss > self.peak_rss:
            self.peak_rss = rss

    def check(self) -> None:
        """
        Raises:
            RunAborted: token already set
            MemoryExceeded: sample above the ceiling
        """
        self.checks += 1
        if self.token.is_set():
            raise RunAborted("run cancelled")
        rss = self.sample()
        if self.ceiling_bytes is not None and rss > self.ceiling_bytes:
            self.token.set()
            logger.error(
                "RSS %.2f GiB exceeded limit %.2f GiB; aborting",
                rss / GIB, self.ceiling_bytes / GIB,
            )
            raise MemoryExceeded(rss, self.ceiling_bytes)

    def tick(self, count: int = 1) -> None:
        self.states += count
        self._since_check += count
        if self._since_check >= self.check_every:
            self._since_check = 0
            self.check()

    def checkpoint(self, label: str) -> None:
        """Unconditional check with a debug memory line."""
        self.check()
        logger.debug("%s rss=%.3f GiB peak=%.3f GiB", label, self.last_rss / GIB, self.peak_rss / GIB)
