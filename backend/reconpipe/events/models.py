"""
Progress event model.

Events are immutable records of pipeline progress. They explain what
happened; subscribers never feed state back through them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field


class EventStep(str, Enum):
    """Pipeline step carried by every progress event."""

    AUTHENTICATE = "authenticate"
    CAPTURE = "capture"
    PROCESSING = "processing"
    DOWNLOAD = "download"
    COMPLETE = "complete"
    ERROR = "error"


class ProgressEvent(BaseModel):
    """
    Single progress notification.

    Immutable once created. ``run_id`` ties the event to the pipeline run
    that produced it so late events from a reset run can be recognised.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    step: EventStep
    message: str = ""
    run_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the wire shape ``{step, message, ...payload}``."""
        data: Dict[str, Any] = {
            "step": self.step.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.run_id:
            data["run_id"] = self.run_id
        data.update(self.payload)
        return data

    def __str__(self) -> str:
        return f"[{self.timestamp.isoformat()}] {self.step.value} - {self.message}"
