"""
Upload errors.

Raised inside the uploader and converted to an UploadResult at its
boundary. Uploading is best-effort and never fails a run.
"""


class UploadError(Exception):
    """Base exception for upload failures."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)
