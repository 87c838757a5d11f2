"""
Watch folder data models.

Models for archives, result folders and completion reports.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FileStabilityCheck(BaseModel):
    """
    Result of a file stability check.

    A file is stable when it is large enough and has not been modified
    for the configured settle time.
    """

    model_config = ConfigDict(extra="forbid")

    path: str = Field(..., description="Path that was checked")
    is_stable: bool = Field(..., description="True when the file can be processed now")
    size_bytes: Optional[int] = Field(
        None, description="Size at check time; None when the file is gone or unreadable"
    )
    age_seconds: Optional[float] = Field(
        None, description="Seconds since last modification"
    )
    reason: Optional[str] = Field(
        None, description="Why the file is not ready yet"
    )


class ArchiveIngestionRecord(BaseModel):
    """One inbound archive while (or after) it is processed."""

    model_config = ConfigDict(extra="forbid")

    filename: str
    destination_folder: str
    in_flight: bool = True
    run_id: Optional[str] = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class IngestOutcome(str, Enum):
    """Result of offering one archive to the watcher."""

    EXTRACTED = "extracted"
    IN_FLIGHT = "in_flight"  # Same filename already being processed
    UNSTABLE = "unstable"  # Still being written, retry later
    MISSING = "missing"  # Gone before we got to it
    IGNORED = "ignored"  # Not an archive
    FAILED = "failed"  # Extraction failed, archive left in place


class CompletionSource(str, Enum):
    """Which detection path noticed the finished folder."""

    EXTRACTION = "extraction"
    OUTBOUND_SCAN = "outbound_scan"


class CompletionNotice(BaseModel):
    """A republished folder, reported once per folder name."""

    model_config = ConfigDict(extra="forbid")

    folder: str
    path: str
    source: CompletionSource
    run_id: Optional[str] = None
    sidecar_image: Optional[str] = None
    detected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class OutboundFile(BaseModel):
    """One file inside a republished folder."""

    model_config = ConfigDict(extra="forbid")

    name: str
    size: int
    type: str = Field(..., description="Lower-case extension including the dot")


class OutboundFolder(BaseModel):
    """A completed, republished result folder."""

    model_config = ConfigDict(extra="forbid")

    name: str
    path: str
    files: List[OutboundFile] = Field(default_factory=list)
    total_size: int = 0
    created_at: datetime


class InboundFile(BaseModel):
    """A file waiting in the inbound folder (archive or screenshot)."""

    model_config = ConfigDict(extra="forbid")

    name: str
    size: int
    modified_at: datetime
