# districts/log.py
# Logging setup plus step timers and rate-limited progress

"""Logging helpers for district counting runs."""

from __future__ import annotations

import logging
import time
from typing import Optional


_CONFIGURED = False
_LOG_FORMAT = "%(asctime)s,%(msecs)03d [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure root logging once for CLI/runner usage."""
    global _CONFIGURED
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    if not _CONFIGURED:
        logging.basicConfig(
            level=level,
            format=_LOG_FORMAT,
            datefmt=_DATE_FORMAT,
        )
        _CONFIGURED = True
    # basicConfig is a no-op when the root already has handlers
    logging.getLogger().setLevel(level)


class StepTimer:
    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger
        self._start = time.monotonic()
        self._last = self._start

    def info(self, message: str, *args) -> None:
        now = time.monotonic()
        elapsed = now - self._start
        delta = now - self._last
        self._last = now
        if args:
            message = message % args
        self._logger.info("%s (elapsed=%.2fs, delta=%.2fs)", message, elapsed, delta)


class ProgressTracker:
    """Rate-limited progress lines with rate and ETA."""

    def __init__(
        self,
        total: Optional[int],
        logger: logging.Logger,
        label: str,
        min_interval_seconds: float = 2.0,
    ) -> None:
        self._total = int(total) if total is not None else None
        self._logger = logger
        self._label = label
        self._start = time.monotonic()
        self._last_log = self._start
        self._processed = 0
        self._min_interval_seconds = float(max(min_interval_seconds, 0.1))

    @property
    def processed(self) -> int:
        return self._processed

    def update(self, count: int, detail: str = "") -> None:
        self._processed += int(count)
        now = time.monotonic()
        if now - self._last_log < self._min_interval_seconds and not (
            self._total is not None and self._processed >= self._total
        ):
            return
        self._last_log = now
        elapsed = now - self._start
        rate = self._processed / elapsed if elapsed > 0 else 0.0
        suffix = f" {detail}" if detail else ""
        if self._total and self._total > 0:
            remaining = max(self._total - self._processed, 0)
            eta = remaining / rate if rate > 0 else 0.0
            self._logger.info(
                "%s %s/%s (elapsed=%.2fs, rate=%.2f/s, eta=%.2fs)%s",
                self._label,
                self._processed,
                self._total,
                elapsed,
                rate,
                eta,
                suffix,
            )
        else:
            self._logger.info(
                "%s processed=%s (elapsed=%.2fs, rate=%.2f/s)%s",
                self._label,
                self._processed,
                elapsed,
                rate,
                suffix,
            )
