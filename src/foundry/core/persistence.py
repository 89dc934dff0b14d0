"""
File persistence helpers shared by the artifact store and learning engine.

Writers take an exclusive flock on a sibling ``.lock`` file so that
separate processes serialize their read-modify-write cycles, and every
write goes through a temp file plus os.replace so readers never observe a
partially written document.
"""

import fcntl
import json
import logging
import os
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, content: str) -> None:
    """Persist text to disk atomically using write-replace pattern."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")

    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except Exception:
        temp_path.unlink(missing_ok=True)
        raise


def read_json(path: Path, default: Any) -> Any:
    """
    Read a JSON document, treating a missing, empty or malformed file as default.

    Corruption is logged rather than raised; callers rebuild from the default.
    """
    if not path.exists():
        return default
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        logger.warning(f"Ignoring non UTF-8 content in {path}: {e}")
        return default
    except OSError as e:
        logger.warning(f"Could not read {path}: {e}")
        return default
    if not text.strip():
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring malformed JSON in {path}: {e}")
        return default


@contextmanager
def locked_file(path: Path) -> Iterator[None]:
    """Hold an exclusive inter-process lock for ``path`` while the block runs."""
    lock_path = path.with_name(f"{path.name}.lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(lock_path, os.O_CREAT | os.O_RDWR, 0o644)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
