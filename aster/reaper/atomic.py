"""Atomic file replacement: write next to the target, then rename over it."""
import os
import shutil
import tempfile
from pathlib import Path


def atomic_write_bytes(path: str | Path, data: bytes):
    """Replace ``path`` with ``data`` so readers see the old or the new file, never half.

    The temporary file lives in the target's directory so ``os.replace``
    stays a same-filesystem rename. Permission bits of an existing target
    are carried over.
    """
    path = Path(path)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            shutil.copymode(path, temp_name)
        os.replace(temp_name, path)
    except BaseException:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise


def atomic_write_text(path: str | Path, text: str, encoding: str = 'utf-8'):
    atomic_write_bytes(path, text.encode(encoding))
