from __future__ import annotations

import logging
import os
from typing import Optional

import cv2
import numpy as np

from finreview.config import DEFAULT_UPLOAD, UploadSettings

logger = logging.getLogger(__name__)

_EXT_MIME = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".webp": "image/webp",
}

_MAGIC = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
)


class UploadRejected(ValueError):
    status_code = 400


class UploadTooLarge(UploadRejected):
    status_code = 413


class UnsupportedUpload(UploadRejected):
    status_code = 415


def detect_mime(data: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> Optional[str]:
    """Declared content type first, then the file extension, then magic bytes."""
    ct = (content_type or "").split(";")[0].strip().lower()
    if ct == "image/jpg":
        ct = "image/jpeg"
    if ct.startswith("image/"):
        return ct
    ext = os.path.splitext((filename or "").lower())[1]
    if ext in _EXT_MIME:
        return _EXT_MIME[ext]
    for magic, mime in _MAGIC:
        if data.startswith(magic):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def decodes_as_image(data: bytes) -> bool:
    arr = np.frombuffer(data, dtype=np.uint8)
    if arr.size == 0:
        return False
    img = cv2.imdecode(arr, cv2.IMREAD_UNCHANGED)
    return img is not None


def check_upload(
    data: bytes,
    filename: Optional[str] = None,
    content_type: Optional[str] = None,
    settings: UploadSettings = DEFAULT_UPLOAD,
) -> str:
    """Return the mime type to send to extraction, or raise ``UploadRejected``.

    Empty bytes pass through untouched; the workflow reports those itself.
    """
    if len(data) > settings.max_upload_mb * 1024 * 1024:
        raise UploadTooLarge(f"File too large: {filename or 'upload'} (Max {int(settings.max_upload_mb)} MB)")
    mime = detect_mime(data, filename, content_type)
    if not data:
        return mime or "image/jpeg"
    if mime not in settings.allowed_mime_types:
        raise UnsupportedUpload(f"Unsupported file type: {mime or 'unknown'}")
    if settings.sniff and not decodes_as_image(data):
        logger.warning("Rejected upload %s: bytes do not decode as an image", filename)
        raise UploadRejected(f"Invalid image content: {filename or 'upload'}")
    return mime
