#!/usr/bin/env python3
# districts/cli.py
# count-districts: command-line entry point with exit codes per failure kind

from __future__ import annotations
import argparse
import logging
import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path
from typing import List, Mapping, Optional

from .config import RunConfig, default_snapshot_path
from .log import configure_logging
from .op.errors import DistrictsError
from .op.governor import ceiling_from_gb
from .runner import run_fresh, run_resume

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="count-districts",
        description="Count partitions of an N x N grid into N equal-area contiguous districts.",
    )
    p.add_argument("dataset", type=Path, help="compatibility dataset (.npz)")
    p.add_argument("snapshot_out", type=Path, nargs="?", default=None,
                   help="where to write the phase-1 snapshot (default: <dataset>_snapshot.npz)")
    p.add_argument("--no-snapshot", action="store_true", help="do not write a snapshot")
    p.add_argument("--resume", type=Path, metavar="SNAPSHOT", default=None,
                   help="skip enumeration and match from this snapshot")
    p.add_argument("--workers", type=int, default=None, help="worker processes (default: env hint or CPU count)")
    p.add_argument("--max-rss-gb", type=float, default=None, help="abort when resident memory exceeds this")
    p.add_argument("--receipt", type=Path, default=None, help="write a JSON run receipt here")
    p.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    return p


def resolve_config(args: argparse.Namespace, env: Optional[Mapping[str, str]] = None) -> RunConfig:
    config = RunConfig.from_env(env)
    config = config.with_overrides(
        workers=args.workers if args.workers and args.workers >= 1 else None,
        max_rss_bytes=ceiling_from_gb(args.max_rss_gb),
        receipt_path=args.receipt,
        log_level=args.log_level.upper() if args.log_level else None,
        snapshot_path=args.snapshot_out,
    )
    if args.no_snapshot:
        config = replace(config, snapshot_path=None)
    elif config.snapshot_path is None:
        config = replace(config, snapshot_path=default_snapshot_path(args.dataset))
    return config


def _install_handlers(token: threading.Event) -> dict:
    if threading.current_thread() is not threading.main_thread():
        return {}

    def handler(signum, frame):
        logger.warning("received signal %d; stopping at next check", signum)
        token.set()

    previous = {}
    for sig in (signal.SIGTERM, signal.SIGINT):
        previous[sig] = signal.signal(sig, handler)
    return previous


def main(argv: Optional[List[str]] = None, env: Optional[Mapping[str, str]] = None) -> int:
    """
    Returns:
        0 on success, the failing error's exit_code otherwise (2 for usage)
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return int(e.code) if e.code is not None else 0

    config = resolve_config(args, env)
    configure_logging(config.log_level)

    token = threading.Event()
    previous = _install_handlers(token)
    try:
        if args.resume is not None:
            if args.snapshot_out is not None:
                logger.warning("ignoring SNAPSHOT_OUT %s in resume mode", args.snapshot_out)
            result = run_resume(args.dataset, args.resume, config, token=token)
        else:
            result = run_fresh(args.dataset, config, token=token)
    except DistrictsError as e:
        print(f"count-districts: {type(e).__name__}: {e}", file=sys.stderr)
        return e.exit_code
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)

    print(result.count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
