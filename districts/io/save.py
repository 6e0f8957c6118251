# districts/io/save.py
# Atomic writers: temp file in the target directory, fsync, then os.replace

from __future__ import annotations
import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, IO


@contextmanager
def atomic_open(path: str | Path, mode: str = "wb") -> Iterator[IO]:
    """
    Open a temporary sibling of path; on clean exit it replaces path.

    The data is flushed and fsynced before the rename. On any exception the
    temporary file is removed and the existing target is left untouched.

    Args:
        path: final destination
        mode: "wb" or "w"
    """
    path = Path(path)
    parent = path.parent if str(path.parent) else Path(".")
    parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=parent)
    try:
        with os.fdopen(fd, mode) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def write_json(path: str | Path, obj: Any) -> None:
    """
    Write object as JSON to file, atomically.

    Uses compact JSON (no whitespace) with sorted keys for determinism.

    Args:
        path: output file path
        obj: JSON-serializable object
    """
    with atomic_open(path, "w") as f:
        json.dump(obj, f, separators=(",", ":"), sort_keys=True)

