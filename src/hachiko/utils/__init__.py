"""Utility exports for filesystem and concurrency helpers."""

from hachiko.utils.concurrency import CancellationToken, KeyedLock, run_with_timeout
from hachiko.utils.fs import atomic_write, relative_within, temp_directory

__all__ = [
    "CancellationToken",
    "KeyedLock",
    "atomic_write",
    "relative_within",
    "run_with_timeout",
    "temp_directory",
]
