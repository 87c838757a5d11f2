"""
Status text classification.

The reconstruction service exposes no status API; its job cards carry a
status label ("Queuing..", "Processing..", "Failed") that disappears once
the job is done. Classification is total: every text maps to exactly one
JobStatusClass.

Drivers that can report the closed enum directly should do so; the text
markers below are the fallback.
"""

from typing import Optional

from .models import JobStatusClass

FAILED_MARKER = "Failed"
PROCESSING_MARKER = "Processing"
QUEUED_MARKER = "Queuing"


def classify_status(
    status_text: Optional[str],
    explicit: Optional[JobStatusClass] = None,
) -> JobStatusClass:
    """
    Classify a job card's status label.

    Precedence: explicit class, absent label (completed), Failed,
    Processing, Queuing, anything else (unknown). Marker matching is
    case-sensitive.
    """
    if explicit is not None:
        return explicit

    if status_text is None or not status_text.strip():
        return JobStatusClass.COMPLETED

    if FAILED_MARKER in status_text:
        return JobStatusClass.FAILED
    if PROCESSING_MARKER in status_text:
        return JobStatusClass.PROCESSING
    if QUEUED_MARKER in status_text:
        return JobStatusClass.QUEUED

    return JobStatusClass.UNKNOWN
