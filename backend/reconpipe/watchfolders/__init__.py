"""
Artifact ingestion.

Public API:
- ArtifactIngestionWatcher: inbound archives -> outbound result folders
- DownloadMonitor: waits for a browser download to finish
- FileStabilityChecker: size + settle time check
- InFlightRegistry, KnownFolderLedger: thread-safe bookkeeping
"""

from .errors import (
    WatchFolderError,
    WatchFolderNotFoundError,
    ArchiveExtractionError,
    DownloadTimeoutError,
)
from .models import (
    FileStabilityCheck,
    ArchiveIngestionRecord,
    IngestOutcome,
    CompletionSource,
    CompletionNotice,
    InboundFile,
    OutboundFile,
    OutboundFolder,
)
from .stability import FileStabilityChecker
from .scanner import FileScanner
from .registry import InFlightRegistry, KnownFolderLedger
from .downloads import DownloadMonitor
from .engine import ArtifactIngestionWatcher

__all__ = [
    # Errors
    "WatchFolderError",
    "WatchFolderNotFoundError",
    "ArchiveExtractionError",
    "DownloadTimeoutError",
    # Models
    "FileStabilityCheck",
    "ArchiveIngestionRecord",
    "IngestOutcome",
    "CompletionSource",
    "CompletionNotice",
    "InboundFile",
    "OutboundFile",
    "OutboundFolder",
    # Components
    "FileStabilityChecker",
    "FileScanner",
    "InFlightRegistry",
    "KnownFolderLedger",
    "DownloadMonitor",
    "ArtifactIngestionWatcher",
]
