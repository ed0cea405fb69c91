"""
TamperGuard - Hashing module.

Computes content digests for file integrity verification. The algorithm
is any name accepted by hashlib (sha256 by default).
"""

import hashlib
import logging
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = "sha256"


def is_supported_algorithm(name: str) -> bool:
    return name.lower() in hashlib.algorithms_available


class HashEngine:
    """Computes hex digests of whole-file content."""

    CHUNK_SIZE = 65536

    def __init__(self, algorithm: str = DEFAULT_ALGORITHM, chunk_size: int = CHUNK_SIZE) -> None:
        algorithm = algorithm.lower()
        if not is_supported_algorithm(algorithm):
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")
        self.algorithm = algorithm
        self.chunk_size = chunk_size

    def compute_file_hash(self, file_path: Union[str, Path]) -> Optional[str]:
        """
        Compute the digest of a file.

        Args:
            file_path: Path to the file.

        Returns:
            Hex digest string, or None if the file vanished or is unreadable.
        """
        file_path = Path(file_path)
        if not file_path.is_file():
            logger.debug("Not a file or does not exist: %s", file_path)
            return None

        try:
            hasher = hashlib.new(self.algorithm)
            with open(file_path, "rb") as f:
                while chunk := f.read(self.chunk_size):
                    hasher.update(chunk)
            # shake_* digests need an explicit length
            if self.algorithm.startswith("shake_"):
                return hasher.hexdigest(32)  # type: ignore[call-arg]
            return hasher.hexdigest()
        except OSError as e:
            logger.warning("Failed to hash %s: %s", file_path, e)
            return None
