"""
Watch folder error hierarchy.

All errors are non-fatal to the application. They indicate operation failure
but the watcher keeps running.
"""


class WatchFolderError(Exception):
    """Base exception for watch folder failures."""

    pass


class WatchFolderNotFoundError(WatchFolderError):
    """Watch folder path does not exist or is not accessible."""

    pass


class ArchiveExtractionError(WatchFolderError):
    """Archive could not be read or extracted."""

    def __init__(self, archive: str, reason: str):
        self.archive = archive
        self.reason = reason
        super().__init__(f"Failed to extract {archive}: {reason}")


class DownloadTimeoutError(WatchFolderError):
    """No finished download appeared within the allowed time."""

    def __init__(self, directory: str, timeout: float):
        self.directory = directory
        self.timeout = timeout
        super().__init__(
            f"Download did not complete within {timeout:g}s (watching {directory})"
        )
