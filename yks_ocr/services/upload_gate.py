"""
Upload gate: validation and staging of the incoming image.

Checks, in order:
    - the `image` field is present
    - the declared content type is an allowed image type
    - the file is not empty and not larger than max_file_size_mb

Only an accepted upload is written to the staging directory, under a
unique name `<field>-<time_ns><ext>`.
"""

import logging
import os
import re
import time
from typing import Optional

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from yks_ocr.config import settings
from yks_ocr.errors import UploadValidationError
from yks_ocr.schemas import UploadedImage
from yks_ocr.services.janitor import RequestResources

logger = logging.getLogger(__name__)

UPLOAD_FIELD = "image"

# Allowed content types and the extension used when the file name has none
ALLOWED_MIME_TYPES = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
    "image/webp": ".webp",
}

READ_CHUNK_BYTES = 1024 * 1024

_SAFE_EXTENSION = re.compile(r"\.[A-Za-z0-9]{1,8}")


async def accept(
    upload: Optional[UploadFile],
    resources: RequestResources,
    *,
    field_name: str = UPLOAD_FIELD,
    staging_dir: Optional[str] = None,
    max_size_bytes: Optional[int] = None,
) -> UploadedImage:
    """
    Validates the upload and writes it to the staging directory.

    The staged path is registered with `resources` as soon as the file
    exists, so the janitor removes it on any later failure.

    The multipart body has already been spooled by Starlette when this
    runs: an oversize upload is fully received before it is rejected,
    but it never reaches the staging directory.

    Args:
        upload: file from the multipart form, None if the field is absent
        resources: resources of the current request
        field_name: form field name, used in messages and the file name
        staging_dir: staging directory (settings.upload_dir by default)
        max_size_bytes: size ceiling (settings.max_file_size_bytes by default)

    Returns:
        UploadedImage: the staged upload

    Raises:
        UploadValidationError: the upload is rejected, nothing was written
    """
    staging_dir = staging_dir or settings.upload_dir
    max_size_bytes = max_size_bytes or settings.max_file_size_bytes

    if upload is None or not upload.filename:
        raise UploadValidationError(
            f"No image file uploaded. Make sure to use '{field_name}' "
            f"as the form field name."
        )

    content_type = (upload.content_type or "").lower()
    if content_type not in ALLOWED_MIME_TYPES:
        logger.warning(f"Rejected {upload.filename}: content type {content_type or 'none'}")
        raise UploadValidationError(
            "File upload failed",
            details="Invalid file type. Only image files are allowed.",
        )

    data = await _read_limited(upload, max_size_bytes)
    if not data:
        raise UploadValidationError(
            "File upload failed",
            details="Uploaded file is empty",
        )

    extension = _pick_extension(upload.filename, content_type)
    storage_path = await run_in_threadpool(
        _stage_bytes, staging_dir, field_name, extension, data
    )
    resources.track_staged_file(storage_path)

    logger.info(f"Staged {upload.filename} ({len(data)} bytes) -> {storage_path}")

    return UploadedImage(
        storage_path=storage_path,
        mime_type=content_type,
        size_bytes=len(data),
        original_filename=upload.filename,
    )


async def _read_limited(upload: UploadFile, max_size_bytes: int) -> bytes:
    """
    Reads the upload, stopping as soon as it exceeds the ceiling.

    Raises:
        UploadValidationError: the file is larger than max_size_bytes
    """
    too_large = UploadValidationError(
        "File upload failed",
        details=f"File too large. Maximum size is {max_size_bytes // (1024 * 1024)} MB",
    )

    if upload.size is not None and upload.size > max_size_bytes:
        raise too_large

    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await upload.read(READ_CHUNK_BYTES)
        if not chunk:
            break
        total += len(chunk)
        if total > max_size_bytes:
            raise too_large
        chunks.append(chunk)

    return b"".join(chunks)


def _pick_extension(filename: str, content_type: str) -> str:
    extension = os.path.splitext(filename)[1]
    if _SAFE_EXTENSION.fullmatch(extension):
        return extension.lower()
    return ALLOWED_MIME_TYPES[content_type]


def _stage_bytes(staging_dir: str, field_name: str, extension: str, data: bytes) -> str:
    """
    Writes the upload under a name no other request can hold.

    The file is created in exclusive mode; if the name is already taken
    by a concurrent request, a new timestamp is drawn.

    Returns:
        str: absolute path of the staged file
    """
    os.makedirs(staging_dir, exist_ok=True)

    while True:
        path = os.path.abspath(
            os.path.join(staging_dir, f"{field_name}-{time.time_ns()}{extension}")
        )
        try:
            staged = open(path, "xb")
        except FileExistsError:
            continue

        try:
            with staged:
                staged.write(data)
        except OSError:
            # Partial write: do not leave a half-staged file behind
            os.remove(path)
            raise

        return path
