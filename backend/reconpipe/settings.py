"""
Pipeline configuration.

Defaults match the behaviour of the capture station. Every value can be
overridden with a RECONPIPE_<FIELD NAME> environment variable, e.g.
RECONPIPE_POLL_INTERVAL=2.5 or RECONPIPE_INBOUND_DIR=/data/downloads.
"""

import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "RECONPIPE_"


class PipelineSettings(BaseModel):
    """Validated settings for one pipeline instance."""

    model_config = ConfigDict(extra="forbid")

    # Job tracker
    poll_interval: float = Field(5.0, gt=0, description="Seconds between job list reads")
    max_poll_attempts: int = Field(150, ge=1, description="Reads before the run times out")
    consecutive_error_warning: int = Field(3, ge=1, description="Read failures before a WARNING")

    # Recovery
    stale_after_seconds: float = Field(120.0, gt=0, description="Age after which a monitoring flag is ignored")
    db_path: str = Field("reconpipe.db", description="SQLite file for recovery flags")

    # Download and ingestion
    download_timeout: float = Field(120.0, gt=0)
    download_check_interval: float = Field(2.0, gt=0)
    download_settle_seconds: float = Field(5.0, ge=0)
    min_archive_bytes: int = Field(1024, ge=0)
    sidecar_window_seconds: float = Field(600.0, ge=0)
    inbound_dir: str = Field("downloads", description="Where archives land")
    outbound_dir: str = Field("downloads/extracted", description="Where result folders are published")
    downloads_dir: Optional[str] = Field(
        None, description="Browser download folder, when it differs from inbound_dir"
    )
    use_polling_observer: bool = False

    # Upload
    upload_base_url: Optional[str] = None
    upload_api_key: Optional[str] = None
    upload_timeout: float = Field(60.0, gt=0)

    # Collaborators
    driver: Optional[str] = Field(
        None, description="Web automation driver factory as \"module:callable\""
    )

    # HTTP surface
    host: str = "127.0.0.1"
    port: int = Field(8085, ge=1, le=65535)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "PipelineSettings":
        """
        Build settings from RECONPIPE_* environment variables.

        Explicit keyword overrides win over the environment. Values are
        validated (and converted from strings) by the model.
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = environ.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
