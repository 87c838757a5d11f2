"""
Thread-safe bookkeeping for the ingestion watcher.

InFlightRegistry: archives (and their destination folders) being processed.
KnownFolderLedger: result folders that have already been reported.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .models import ArchiveIngestionRecord


@dataclass
class InFlightRegistry:
    """
    Archives currently being extracted.

    Invariants:
    - _records is protected by _lock
    - A filename can be acquired by only one worker at a time
    - A destination folder being assembled is never reported by the outbound scan
    """
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _records: Dict[str, ArchiveIngestionRecord] = field(default_factory=dict)

    def acquire(
        self,
        filename: str,
        destination_folder: str,
        run_id: Optional[str] = None,
    ) -> Optional[ArchiveIngestionRecord]:
        """Claim an archive. Returns None if it is already being processed."""
        with self._lock:
            if filename in self._records:
                return None
            record = ArchiveIngestionRecord(
                filename=filename,
                destination_folder=destination_folder,
                run_id=run_id,
            )
            self._records[filename] = record
            return record

    def release(self, filename: str) -> None:
        with self._lock:
            self._records.pop(filename, None)

    def is_destination_busy(self, folder_name: str) -> bool:
        """True while some archive is being assembled into ``folder_name``."""
        with self._lock:
            return any(
                r.destination_folder == folder_name for r in self._records.values()
            )

    def active(self) -> List[ArchiveIngestionRecord]:
        with self._lock:
            return list(self._records.values())


@dataclass
class KnownFolderLedger:
    """
    Result folders that have been reported.

    Both detection paths (extraction completion and the outbound scan)
    go through mark_new(), so each folder name is reported at most once.
    """
    _lock: threading.Lock = field(default_factory=threading.Lock)
    _known: Set[str] = field(default_factory=set)

    def mark_new(self, folder_name: str) -> bool:
        """Record a folder. True only for the first caller to see it."""
        with self._lock:
            if folder_name in self._known:
                return False
            self._known.add(folder_name)
            return True

    def seed(self, folder_names) -> None:
        """Mark folders as known without reporting them."""
        with self._lock:
            self._known.update(folder_names)

    def is_known(self, folder_name: str) -> bool:
        with self._lock:
            return folder_name in self._known
