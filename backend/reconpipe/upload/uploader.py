"""
Outbound uploader.

Sends a finished result (a file, or a result folder zipped on the fly) and
an optional screenshot to the artifact service as a multipart POST.
"""

import logging
import shutil
import tempfile
from pathlib import Path
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict

from .errors import UploadError

logger = logging.getLogger(__name__)


UPLOAD_PATH = "/api/artifacts/upload"


class UploadResult(BaseModel):
    """Outcome of one upload attempt."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    error: Optional[str] = None
    status_code: Optional[int] = None


class OutboundUploader:
    """
    Best-effort uploader.

    upload() never raises: network errors and non-2xx responses come back
    as UploadResult(success=False) and are logged at WARNING.
    A missing base URL disables uploading.
    """

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    @property
    def enabled(self) -> bool:
        return self.base_url is not None

    def upload(self, artifact_path: str, sidecar_image_path: Optional[str] = None) -> UploadResult:
        """Upload one result. Directories are zipped into a temporary archive."""
        if not self.enabled:
            logger.info(f"Upload disabled, not sending {Path(artifact_path).name}")
            return UploadResult(success=False, error="upload disabled")

        try:
            status_code = self._send(Path(artifact_path), sidecar_image_path)
        except UploadError as e:
            logger.warning(f"Upload of {Path(artifact_path).name} failed: {e}")
            return UploadResult(success=False, error=str(e), status_code=e.status_code)

        logger.info(f"Uploaded {Path(artifact_path).name} (HTTP {status_code})")
        return UploadResult(success=True, status_code=status_code)

    def _send(self, artifact: Path, sidecar_image_path: Optional[str]) -> int:
        if not artifact.exists():
            raise UploadError(f"Artifact not found: {artifact}")

        with tempfile.TemporaryDirectory(prefix="reconpipe-upload-") as tmp:
            if artifact.is_dir():
                archive = shutil.make_archive(str(Path(tmp) / artifact.name), "zip", root_dir=str(artifact))
                payload = Path(archive)
            else:
                payload = artifact

            sidecar = Path(sidecar_image_path) if sidecar_image_path else None
            if sidecar is not None and not sidecar.is_file():
                logger.warning(f"Screenshot {sidecar} missing, uploading without it")
                sidecar = None

            with payload.open("rb") as artifact_fh:
                files = {"artifact": (payload.name, artifact_fh, "application/octet-stream")}
                if sidecar is None:
                    return self._post(files)
                with sidecar.open("rb") as image_fh:
                    files["screenshot"] = (sidecar.name, image_fh, "application/octet-stream")
                    return self._post(files)

    def _post(self, files) -> int:
        url = f"{self.base_url}{UPLOAD_PATH}"
        headers = {"X-API-Key": self.api_key} if self.api_key else {}

        client = self._client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(url, files=files, headers=headers)
            response.raise_for_status()
            return response.status_code
        except httpx.HTTPStatusError as e:
            raise UploadError(
                f"Server returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise UploadError(f"Request to {url} failed: {e}") from e
        finally:
            if self._client is None:
                client.close()
