"""
Best-effort upload of finished results.

Public API:
- OutboundUploader: multipart POST of a result folder or file
- UploadResult: outcome model (upload never raises)
"""

from .errors import UploadError
from .uploader import OutboundUploader, UploadResult

__all__ = [
    "UploadError",
    "OutboundUploader",
    "UploadResult",
]
