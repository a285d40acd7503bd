"""
hachiko — filesystem utilities

File: src/hachiko/utils/fs.py
Last updated: 2026-10-19

Purpose
- Small helpers for staging agent workspaces and writing results back safely.

Functional requirements
- Writes into the repository replace the target in a single step.
- Paths that resolve outside their root are never touched.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

PathLike = str | os.PathLike[str]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """Write ``data`` to a sibling temp file, fsync it, then ``os.replace`` the target."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = data.encode(encoding) if isinstance(data, str) else data

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target.parent),
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def relative_within(path: PathLike, root: PathLike) -> str | None:
    """
    Return ``path`` relative to ``root`` as a POSIX string.

    Relative inputs are taken relative to ``root``. ``None`` means the resolved
    path escapes ``root``.
    """
    resolved_root = Path(root).resolve()
    resolved = (resolved_root / path).resolve()
    try:
        return resolved.relative_to(resolved_root).as_posix()
    except ValueError:
        return None


@contextmanager
def temp_directory(prefix: str = "hachiko-") -> Iterator[Path]:
    """Yield a temporary directory path and clean it up on exit."""
    with tempfile.TemporaryDirectory(prefix=prefix) as tmp:
        yield Path(tmp)


__all__ = ["atomic_write", "relative_within", "temp_directory"]
