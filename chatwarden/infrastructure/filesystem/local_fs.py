"""Local file system helpers used by exports.

Failures are logged and reported through the boolean return value rather
than raised, so a failed export never aborts the command that produced it.
"""

import asyncio
import logging
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_dir(dir_path: PathLike) -> bool:
    """Creates a directory (and parents) if it does not exist.

    Returns:
        True if the directory exists afterwards.
    """
    path = Path(dir_path)
    try:
        path.mkdir(parents=True, exist_ok=True)
        return True
    except OSError as e:
        logger.error(f"Failed to create directory {path}: {e}")
        return False


def safe_write_file(file_path: PathLike, content: str) -> bool:
    """Writes text to a file, creating parent directories as needed.

    Returns:
        True on success, False if the write failed (the error is logged).
    """
    path = Path(file_path)
    if not ensure_dir(path.parent):
        return False
    try:
        path.write_text(content, encoding="utf-8")
        logger.debug(f"Wrote {len(content)} characters to {path}")
        return True
    except OSError as e:
        logger.error(f"Failed to write file {path}: {e}")
        return False


async def write_file_async(file_path: PathLike, content: str) -> bool:
    """safe_write_file run in a worker thread so large exports don't block the loop."""
    return await asyncio.to_thread(safe_write_file, file_path, content)
