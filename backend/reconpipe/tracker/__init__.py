"""
Job tracker - polling-based status inference for the external job.

Public API:
    JobStatusClass - Closed status contract
    JobObservation, JobSnapshot - One read of the job list
    classify_status - Total status text classification
    JobTracker - Single-tick evaluation with at-most-one tracked job
    PollLoop - Fixed-interval background polling
"""

from .errors import TrackerError, PollTimeoutError
from .models import (
    JobStatusClass,
    JobObservation,
    JobSnapshot,
    PollOutcome,
)
from .classify import classify_status
from .poller import JobTracker, PollLoop

__all__ = [
    # Errors
    "TrackerError",
    "PollTimeoutError",
    # Models
    "JobStatusClass",
    "JobObservation",
    "JobSnapshot",
    "PollOutcome",
    # Classification
    "classify_status",
    # Polling
    "JobTracker",
    "PollLoop",
]
