"""
Atomic file writing with fsync so a crash never leaves a half-written PEM.

  1. write to a temporary file in the same directory
  2. fsync it
  3. os.replace() over the target (atomic on POSIX)
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path


def atomic_write(path: Path, content: str | bytes, mode: int | None = None) -> None:
    """
    Atomically replace *path* with *content*.

    *mode*, when given, is applied to the temp file before the rename so the
    target never exists with looser permissions.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = content.encode("utf-8") if isinstance(content, str) else content

    fd, temp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except BaseException:
        try:
            os.unlink(temp_path)
        except OSError:
            pass
        raise
