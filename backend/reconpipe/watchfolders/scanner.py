"""
Filesystem scanner for the inbound and outbound folders.

Top-level only. Skips hidden entries and symlinks.
"""

import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .models import InboundFile, OutboundFile, OutboundFolder

logger = logging.getLogger(__name__)


ARCHIVE_EXTENSIONS = {".zip"}
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}


def _visible(item: Path) -> bool:
    return not item.name.startswith(".") and not item.is_symlink()


class FileScanner:
    """
    Scans the watched folders.

    Inbound: archives waiting to be extracted, sidecar screenshots, raw listing.
    Outbound: republished result folders.
    """

    def scan_archives(self, inbound: Path) -> List[Path]:
        """Archives in the inbound folder, sorted by path."""
        if not inbound.is_dir():
            return []
        candidates = []
        try:
            for item in inbound.iterdir():
                if not _visible(item) or not item.is_file():
                    continue
                if item.suffix.lower() in ARCHIVE_EXTENSIONS:
                    candidates.append(item)
        except OSError as e:
            logger.warning(f"Cannot scan inbound folder {inbound}: {e}")
        return sorted(candidates)

    def scan_folders(self, outbound: Path) -> List[Path]:
        """Result folders in the outbound folder, sorted by path."""
        if not outbound.is_dir():
            return []
        folders = []
        try:
            for item in outbound.iterdir():
                if _visible(item) and item.is_dir():
                    folders.append(item)
        except OSError as e:
            logger.warning(f"Cannot scan outbound folder {outbound}: {e}")
        return sorted(folders)

    def find_recent_images(
        self,
        directory: Path,
        window_seconds: float,
        now: Optional[float] = None,
    ) -> List[Path]:
        """
        Images in ``directory`` modified within the window, newest first.

        Used to pair screenshots saved next to an archive with its result folder.
        """
        if not directory.is_dir():
            return []
        now = now if now is not None else time.time()
        recent = []
        try:
            for item in directory.iterdir():
                if not _visible(item) or not item.is_file():
                    continue
                if item.suffix.lower() not in IMAGE_EXTENSIONS:
                    continue
                mtime = item.stat().st_mtime
                if now - mtime <= window_seconds:
                    recent.append((mtime, item))
        except OSError as e:
            logger.warning(f"Cannot scan {directory} for screenshots: {e}")
        recent.sort(key=lambda entry: entry[0], reverse=True)
        return [item for _, item in recent]

    def list_inbound(self, inbound: Path) -> List[InboundFile]:
        """Files waiting in the inbound folder, newest first."""
        if not inbound.is_dir():
            return []
        files = []
        try:
            for item in inbound.iterdir():
                if not _visible(item) or not item.is_file():
                    continue
                stat = item.stat()
                files.append(
                    InboundFile(
                        name=item.name,
                        size=stat.st_size,
                        modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                    )
                )
        except OSError as e:
            logger.warning(f"Cannot list inbound folder {inbound}: {e}")
        files.sort(key=lambda f: f.modified_at, reverse=True)
        return files

    def describe_folder(self, folder: Path) -> OutboundFolder:
        """Listing entry for one result folder."""
        files = []
        for item in sorted(folder.iterdir()):
            if not item.is_file():
                continue
            files.append(
                OutboundFile(
                    name=item.name,
                    size=item.stat().st_size,
                    type=item.suffix.lower(),
                )
            )
        created = datetime.fromtimestamp(folder.stat().st_mtime, tz=timezone.utc)
        return OutboundFolder(
            name=folder.name,
            path=str(folder),
            files=files,
            total_size=sum(f.size for f in files),
            created_at=created,
        )

    def list_outbound(self, outbound: Path) -> List[OutboundFolder]:
        """All result folders, newest first."""
        folders = []
        for folder in self.scan_folders(outbound):
            try:
                folders.append(self.describe_folder(folder))
            except OSError as e:
                logger.warning(f"Skipping unreadable result folder {folder}: {e}")
        folders.sort(key=lambda f: f.created_at, reverse=True)
        return folders
