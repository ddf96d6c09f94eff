# Media intake: stores uploaded issue photos under UPLOAD_DIR
#
# A submission's files are stored all-or-nothing. If any file is rejected or
# fails to write, the files already stored for that submission are removed.

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import UploadFile

from . import config
from .database import executor

logger = logging.getLogger(__name__)


class MediaRejectedError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def upload_dir() -> Path:
    path = Path(config.UPLOAD_DIR)
    path.mkdir(parents=True, exist_ok=True)
    return path


def image_ref(filename: str) -> Dict[str, str]:
    return {"url": f"{config.UPLOAD_URL_PREFIX}/{filename}", "filename": filename}


def real_uploads(files: Optional[List[UploadFile]]) -> List[UploadFile]:
    """Drop the empty parts browsers send for an untouched file input."""
    return [f for f in (files or []) if f is not None and f.filename]


def _check_upload(upload: UploadFile, data: bytes) -> str:
    content_type = (upload.content_type or "").split(";")[0].strip().lower()
    ext = config.ALLOWED_IMAGE_TYPES.get(content_type)
    if ext is None:
        raise MediaRejectedError(f"Only image files are allowed ({upload.filename})")
    if not data:
        raise MediaRejectedError(f"Image file is empty ({upload.filename})")
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise MediaRejectedError(
            f"Image exceeds {config.MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit ({upload.filename})")
    return ext


async def store_uploads(files: Optional[List[UploadFile]]) -> List[Dict[str, str]]:
    """Store every file of one submission and return their references in order."""
    uploads = real_uploads(files)
    if len(uploads) > config.MAX_IMAGES:
        raise MediaRejectedError(f"At most {config.MAX_IMAGES} images are allowed")
    if not uploads:
        return []
    target = upload_dir()
    loop = asyncio.get_event_loop()
    stored: List[Dict[str, str]] = []
    try:
        for upload in uploads:
            data = await upload.read(config.MAX_UPLOAD_BYTES + 1)
            ext = _check_upload(upload, data)
            filename = f"images-{uuid.uuid4().hex}{ext}"
            await loop.run_in_executor(executor, (target / filename).write_bytes, data)
            stored.append(image_ref(filename))
    except Exception:
        discard_uploads(stored)
        raise
    logger.info("Stored %d image(s)", len(stored))
    return stored


def discard_uploads(images: List[Dict[str, str]]) -> None:
    target = Path(config.UPLOAD_DIR)
    for image in images:
        try:
            (target / image["filename"]).unlink(missing_ok=True)
        except OSError as e:
            logger.error("Could not remove upload %s: %s", image["filename"], e)
