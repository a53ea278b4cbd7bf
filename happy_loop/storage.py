import logging
import os
import secrets
from typing import Optional

from fastapi import UploadFile

from .config import UPLOADS_DIR
from .errors import EvidenceError
from .models import MediaType

logger = logging.getLogger(__name__)

MEDIA_EXTENSIONS = {
    MediaType.image: {".png", ".jpg", ".jpeg", ".gif", ".webp", ".heic"},
    MediaType.video: {".mp4", ".mov", ".webm", ".m4v"},
    MediaType.audio: {".mp3", ".m4a", ".wav", ".ogg"},
}


def placeholder_image_url(width: int = 300, height: int = 200) -> str:
    return f"https://placehold.co/{width}x{height}/EEE/31343C?text=Evidence"


def media_type_for(filename: str) -> MediaType:
    ext = os.path.splitext(filename)[1].lower()
    for media_type, extensions in MEDIA_EXTENSIONS.items():
        if ext in extensions:
            return media_type
    raise EvidenceError(f"Unsupported evidence file type: {ext or filename}")


async def store_evidence_upload(file: Optional[UploadFile]) -> Optional[tuple[str, MediaType]]:
    if not file or not file.filename:
        return None
    media_type = media_type_for(file.filename)
    ext = os.path.splitext(file.filename)[1].lower()
    filename = f"evidence-{secrets.token_hex(8)}{ext}"
    os.makedirs(UPLOADS_DIR, exist_ok=True)
    path = os.path.join(UPLOADS_DIR, filename)
    content = await file.read()
    with open(path, "wb") as f:
        f.write(content)
    logger.info("Stored %s evidence %s (%d bytes)", media_type.value, filename, len(content))
    return f"/static/uploads/{filename}", media_type


def discard_evidence(url: str):
    path = os.path.join(UPLOADS_DIR, os.path.basename(url))
    try:
        os.remove(path)
    except FileNotFoundError:
        return
    logger.info("Discarded evidence %s", os.path.basename(url))
