"""Per-request scratch directories."""

import logging
import shutil
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


def new_scratch_id() -> str:
    return uuid.uuid4().hex


def remove_scratch_directory(path: str | Path) -> bool:
    """Recursively remove ``path``. Failures are logged, never raised.

    Returns:
        True if the directory is gone afterwards
    """
    path = Path(path)
    if not path.exists():
        return True
    try:
        shutil.rmtree(path)
    except OSError as e:
        logger.warning(f"[SCRATCH] Failed to remove {path}: {e}")
        return False
    logger.info(f"[SCRATCH] Removed {path}")
    return True


@contextmanager
def scratch_directory(root: str | Path, name: str | None = None) -> Iterator[Path]:
    """Create ``root/<name>`` and remove it on every exit path.

    Args:
        root: Parent directory, created if missing
        name: Directory name; a fresh 32-hex id when omitted
    """
    path = Path(root) / (name or new_scratch_id())
    path.mkdir(parents=True, exist_ok=False)
    logger.info(f"[SCRATCH] Created {path}")
    try:
        yield path
    finally:
        remove_scratch_directory(path)
