# districts/op/errors.py
# Failure kinds that terminate a run, each mapped to a distinct exit status

from __future__ import annotations


class DistrictsError(RuntimeError):
    """Base error for fatal run conditions."""

    exit_code = 1


class DatasetLoadError(DistrictsError):
    """Compatibility dataset archive is missing, unreadable or malformed."""

    exit_code = 3


class MemoryExceeded(DistrictsError):
    """
    Resident memory crossed the configured ceiling during enumeration.

    The partial bucket store is discarded; the run is meant to be retried
    externally with a larger ceiling.
    """

    exit_code = 4

    def __init__(self, rss_bytes: int, ceiling_bytes: int) -> None:
        self.rss_bytes = int(rss_bytes)
        self.ceiling_bytes = int(ceiling_bytes)
        super().__init__(
            f"RSS {self.rss_bytes / 2**30:.2f} GiB exceeded limit "
            f"{self.ceiling_bytes / 2**30:.2f} GiB"
        )

    def __reduce__(self):
        return (type(self), (self.rss_bytes, self.ceiling_bytes))


class VersionMismatch(DistrictsError):
    """Snapshot metadata disagrees with the loaded dataset."""

    exit_code = 5

    def __init__(self, field: str, expected, found) -> None:
        self.field = field
        self.expected = expected
        self.found = found
        super().__init__(f"snapshot {field} mismatch: expected {expected!r}, found {found!r}")

    def __reduce__(self):
        return (type(self), (self.field, self.expected, self.found))


class SnapshotIOError(DistrictsError):
    """Snapshot could not be written or read back intact."""

    exit_code = 6


class RunAborted(DistrictsError):
    """Cancellation token was set (signal, or another worker failed)."""

    exit_code = 7
