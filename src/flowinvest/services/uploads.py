"""
Validation of uploaded screenshots before they are embedded in model prompts.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any

from werkzeug.datastructures import FileStorage

from flowinvest.exceptions import RequestError

logger = logging.getLogger(__name__)

ALLOWED_MIME_TYPES = frozenset({"image/png", "image/jpeg", "application/pdf"})
DEFAULT_MAX_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class UploadedImage:
    data: bytes
    mime_type: str
    filename: str = ""

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"

    def image_part(self) -> dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": self.to_data_url()}}


def read_upload(file: FileStorage | None, max_bytes: int = DEFAULT_MAX_BYTES) -> UploadedImage:
    """
    Read an uploaded file into memory, enforcing type and size limits.

    Raises:
        RequestError: missing, empty, oversized or unsupported file.
    """
    if file is None or not file.filename:
        raise RequestError("No file uploaded", "Please upload a screenshot file with the key \"screenshot\"")

    mime_type = (file.mimetype or "").lower()
    if mime_type not in ALLOWED_MIME_TYPES:
        raise RequestError("Unsupported file type", f"{mime_type or 'unknown'} is not one of PNG, JPEG or PDF")

    # Read one byte past the limit so oversized files are detected without buffering them whole.
    data = file.stream.read(max_bytes + 1)
    if not data:
        raise RequestError("File upload failed", f"{file.filename} is empty")
    if len(data) > max_bytes:
        raise RequestError("File upload failed", f"{file.filename} exceeds the {max_bytes // (1024 * 1024)}MB limit")

    logger.debug("Accepted upload %s (%s, %s bytes)", file.filename, mime_type, len(data))
    return UploadedImage(data=data, mime_type=mime_type, filename=file.filename)
