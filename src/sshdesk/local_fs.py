"""Local directory listing for the transfer view."""

import os
from pathlib import Path
from typing import List

from .exceptions import LocalFileNotFoundError, SSHDeskError
from .logger import Logger
from .models import LocalEntry

logger = Logger.get_logger(__name__)


def home_dir() -> str:
    return str(Path.home())


def list_local(dir_path: str) -> List[LocalEntry]:
    """List a local directory, directories first, then by name ignoring case."""
    normalized = os.path.normpath(os.path.expanduser(dir_path))
    if not os.path.exists(normalized):
        raise LocalFileNotFoundError(normalized)

    try:
        scanned = list(os.scandir(normalized))
    except OSError as e:
        raise SSHDeskError(f"Failed to list directory: {e}") from e

    entries = []
    for item in scanned:
        try:
            info = item.stat()
            entries.append(LocalEntry(
                name=item.name,
                path=os.path.join(normalized, item.name),
                is_directory=item.is_dir(),
                size=info.st_size,
                modified=int(info.st_mtime * 1000),
            ))
        except OSError as e:
            # broken symlinks, permission denied
            logger.warning(f"Failed to stat {item.path}: {e}")

    entries.sort(key=lambda entry: (not entry.is_directory, entry.name.lower()))
    return entries
