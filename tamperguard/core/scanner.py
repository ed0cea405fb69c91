"""
TamperGuard - Directory scanner module.

Enumerates the regular files under a watch target, recursively or one
level deep, skipping editor swap/backup files.
"""

import logging
from pathlib import Path
from typing import Iterator, Union

logger = logging.getLogger(__name__)

TEMP_FILE_SUFFIXES = (".swp", ".swpx", ".swx", "~")


def is_temp_file(path: Union[str, Path]) -> bool:
    """True for editor temp/backup files that are never tracked."""
    return Path(path).name.endswith(TEMP_FILE_SUFFIXES)


class DirectoryScanner:
    """Lists trackable files under a directory."""

    def __init__(self, recursive: bool = True) -> None:
        self.recursive = recursive

    def iter_files(self, directory: Union[str, Path]) -> Iterator[str]:
        """Yield absolute file paths (as strings) under directory."""
        directory = Path(directory)
        if not directory.is_dir():
            logger.warning("Not a directory: %s", directory)
            return
        candidates = directory.rglob("*") if self.recursive else directory.iterdir()
        for path in candidates:
            try:
                if not path.is_file():
                    continue
            except OSError as e:
                logger.warning("Skipping %s: %s", path, e)
                continue
            if is_temp_file(path):
                continue
            yield str(path)
