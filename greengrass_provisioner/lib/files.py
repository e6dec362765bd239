from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

PRIVATE_FILE_MODE = 0o600
SHARED_FILE_MODE = 0o640
PUBLIC_FILE_MODE = 0o644


def atomic_write_text(path: Path, content: str, *, mode: int = SHARED_FILE_MODE) -> None:
    """Write ``content`` to ``path`` via a temp file in the same directory.

    The temp file is created with owner-only permissions and only widened to
    ``mode`` after the rename, so readers either see the old file or the
    complete new one.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    os.chmod(path, mode)


def set_mode(path: Path, mode: int) -> None:
    os.chmod(path, mode)
    logger.debug("chmod %o %s", mode, str(path))
