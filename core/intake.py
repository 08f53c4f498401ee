"""
Upload intake: validation and inline storage of workplace photos.

All files of a request are validated before anything is stored, so a bad
file never leaves a half-created audit behind.
"""

import base64
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence

from fastapi import UploadFile

from core.errors import InvalidRequestError
from core.logging import get_logger
from core.models import IndustryType

logger = get_logger(__name__)

ALLOWED_CONTENT_TYPES = ("image/jpeg", "image/png", "image/webp")
MAX_UPLOAD_SIZE_MB = int(os.environ.get("MAX_UPLOAD_SIZE_MB", "10"))
MAX_UPLOAD_SIZE = MAX_UPLOAD_SIZE_MB * 1024 * 1024
MAX_BATCH_IMAGES = 10

NO_FILE_MESSAGE = "No file provided"
INVALID_TYPE_MESSAGE = "Invalid file type. Please upload JPG, PNG, or WebP."
TOO_LARGE_MESSAGE = f"File too large. Maximum size is {MAX_UPLOAD_SIZE_MB}MB."
TOO_MANY_FILES_MESSAGE = f"Too many files. Maximum is {MAX_BATCH_IMAGES} images per audit."
INVALID_INDUSTRY_MESSAGE = "Invalid industry type."


@dataclass(frozen=True)
class ValidatedImage:
    file_name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"


def normalize_industry(industry: Optional[str]) -> str:
    """Default to ``general``; reject values outside the known industries."""
    value = (industry or "").strip().lower() or IndustryType.GENERAL.value
    try:
        return IndustryType(value).value
    except ValueError as exc:
        raise InvalidRequestError(INVALID_INDUSTRY_MESSAGE) from exc


def check_image(file_name: str, content_type: Optional[str], data: bytes) -> ValidatedImage:
    """
    Validate one image by declared type and size.

    Raises:
        InvalidRequestError: type not allowed or file over the size limit
    """
    content_type = (content_type or "").split(";")[0].strip().lower()
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise InvalidRequestError(INVALID_TYPE_MESSAGE)
    if len(data) > MAX_UPLOAD_SIZE:
        raise InvalidRequestError(TOO_LARGE_MESSAGE)
    return ValidatedImage(file_name=file_name or "upload", content_type=content_type, data=data)


async def read_uploads(files: Optional[Sequence[UploadFile]]) -> List[ValidatedImage]:
    """
    Read and validate every uploaded file.

    Files are read at most one byte past the limit so an oversized upload
    is never buffered whole.
    """
    files = [f for f in (files or []) if f is not None]
    if not files:
        raise InvalidRequestError(NO_FILE_MESSAGE)
    if len(files) > MAX_BATCH_IMAGES:
        raise InvalidRequestError(TOO_MANY_FILES_MESSAGE)

    images = []
    for upload in files:
        # Type is checked before reading any bytes
        check_image(upload.filename, upload.content_type, b"")
        data = await upload.read(MAX_UPLOAD_SIZE + 1)
        images.append(check_image(upload.filename, upload.content_type, data))

    logger.debug(
        "Validated uploads",
        extra={"count": len(images), "bytes": sum(i.size for i in images)},
    )
    return images


def display_name(images: Sequence[ValidatedImage]) -> str:
    """Audit display name: the file name, or "first.jpg (+N more)" for batches."""
    first = images[0].file_name
    if len(images) == 1:
        return first
    return f"{first} (+{len(images) - 1} more)"
