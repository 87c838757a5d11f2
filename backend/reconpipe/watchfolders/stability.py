"""
File stability detection.

A downloaded archive is considered finished when it is large enough and
has not been modified for a settle period. Browsers write into a temporary
file and rename it when done, so a single stat is usually sufficient.
"""

import time
from pathlib import Path

from .models import FileStabilityCheck

# Suffixes browsers use while a download is still in progress
PARTIAL_DOWNLOAD_SUFFIXES = {".crdownload", ".part", ".partial", ".download", ".tmp"}


class FileStabilityChecker:
    """
    Single-shot file stability detector.

    Configuration:
        min_size_bytes: Files smaller than this are treated as unfinished (default: 1024)
        settle_seconds: Minimum seconds since last modification (default: 5)
    """

    def __init__(self, min_size_bytes: int = 1024, settle_seconds: float = 5.0):
        self.min_size_bytes = min_size_bytes
        self.settle_seconds = settle_seconds

    def check_stability(self, path: Path) -> FileStabilityCheck:
        """
        Check if a file is stable.

        A file is considered stable when:
        1. File exists and is accessible
        2. File is not a partial-download placeholder
        3. File size is at least min_size_bytes
        4. File has not been modified for settle_seconds
        """
        path_str = str(path)

        if path.suffix.lower() in PARTIAL_DOWNLOAD_SUFFIXES:
            return FileStabilityCheck(
                path=path_str,
                is_stable=False,
                reason="Partial download placeholder",
            )

        try:
            stat = path.stat()
        except FileNotFoundError:
            return FileStabilityCheck(
                path=path_str,
                is_stable=False,
                reason="File does not exist",
            )
        except OSError as e:
            return FileStabilityCheck(
                path=path_str,
                is_stable=False,
                reason=f"File not accessible: {e}",
            )

        size = stat.st_size
        age = time.time() - stat.st_mtime

        if size < self.min_size_bytes:
            return FileStabilityCheck(
                path=path_str,
                is_stable=False,
                size_bytes=size,
                age_seconds=age,
                reason=f"File too small ({size} bytes, required: {self.min_size_bytes})",
            )

        if age < self.settle_seconds:
            return FileStabilityCheck(
                path=path_str,
                is_stable=False,
                size_bytes=size,
                age_seconds=age,
                reason=f"File too recent (age: {age:.1f}s, required: {self.settle_seconds}s)",
            )

        return FileStabilityCheck(
            path=path_str,
            is_stable=True,
            size_bytes=size,
            age_seconds=age,
        )
