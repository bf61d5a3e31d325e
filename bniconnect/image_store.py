# bniconnect/image_store.py

import asyncio
import base64
import binascii
import logging
import os
import re

from bniconnect.errors import ImageStoreError
from bniconnect.google_helpers import DATA_DIR, STORE_BACKEND

logger = logging.getLogger("bni_backend")

_DATA_URL_RE = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)
_BASE64_IMAGE_RE = re.compile(r"^data:image/[a-zA-Z+.-]+;base64,")
_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9_.-]")

CONTENT_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
}


def is_base64_image(value) -> bool:
    return isinstance(value, str) and bool(_BASE64_IMAGE_RE.match(value))


def _sanitize_for_filename(s: str) -> str:
    # letters, digits, _ . - only
    return _SAFE_NAME_RE.sub("_", s or "")


def decode_data_url(data_url: str, image_id: str) -> tuple[str, bytes, str]:
    """
    Returns (filename, raw bytes, media type) for a `data:<type>;base64,<data>` string.
    """
    if not isinstance(data_url, str):
        raise ImageStoreError("Invalid base64 data")
    m = _DATA_URL_RE.match(data_url)
    if not m:
        raise ImageStoreError("Invalid base64 format")
    media_type = m.group(1)
    try:
        raw = base64.b64decode(m.group(2), validate=False)
    except (binascii.Error, ValueError) as e:
        raise ImageStoreError(f"Invalid base64 payload: {e}") from e
    if not raw:
        raise ImageStoreError("Empty image payload")
    ext = (media_type.split("/")[-1] or "png").split("+")[0]
    return f"{_sanitize_for_filename(image_id)}.{ext}", raw, media_type


def image_url(filename: str) -> str:
    return f"/api/images/{filename}"


class LocalImageStore:
    def __init__(self, data_dir: str) -> None:
        self.images_dir = os.path.join(data_dir, "images")

    def _write(self, filename: str, raw: bytes) -> None:
        os.makedirs(self.images_dir, exist_ok=True)
        with open(os.path.join(self.images_dir, filename), "wb") as f:
            f.write(raw)

    def _read(self, filename: str) -> bytes | None:
        try:
            with open(os.path.join(self.images_dir, filename), "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    async def store_image(self, data_url: str, image_id: str) -> str:
        filename, raw, media_type = decode_data_url(data_url, image_id)
        try:
            await asyncio.to_thread(self._write, filename, raw)
        except OSError as e:
            raise ImageStoreError(f"Could not store image {filename}: {e}") from e
        logger.info(f"[images] stored {filename} ({len(raw)} bytes, {media_type})")
        return image_url(filename)

    async def get_image(self, filename: str) -> tuple[bytes, str] | None:
        filename = _sanitize_for_filename(filename)
        raw = await asyncio.to_thread(self._read, filename)
        if raw is None:
            return None
        ext = filename.rsplit(".", 1)[-1].lower()
        return raw, CONTENT_TYPES.get(ext, "application/octet-stream")


class GCSImageStore:
    def __init__(self, connection) -> None:
        self.connection = connection

    async def store_image(self, data_url: str, image_id: str) -> str:
        filename, raw, media_type = decode_data_url(data_url, image_id)
        key = f"images/{filename}"
        try:
            await asyncio.to_thread(self.connection.upload_bytes, key, raw, media_type)
            stored = await asyncio.to_thread(self.connection.download_bytes, key)
        except Exception as e:
            raise ImageStoreError(f"Could not store image {key}: {e}") from e
        if not stored or not stored[0]:
            raise ImageStoreError(f"Image stored but verification failed for {key}")
        logger.info(f"[images] stored gs object {key} ({len(raw)} bytes, {media_type})")
        return image_url(filename)

    async def get_image(self, filename: str) -> tuple[bytes, str] | None:
        filename = _sanitize_for_filename(filename)
        entry = await asyncio.to_thread(self.connection.download_bytes, f"images/{filename}")
        if entry is None:
            return None
        raw, content_type = entry
        ext = filename.rsplit(".", 1)[-1].lower()
        return raw, content_type or CONTENT_TYPES.get(ext, "application/octet-stream")


def build_image_store(backend: str | None = None, data_dir: str | None = None):
    backend = (backend or STORE_BACKEND).lower()
    if backend == "gcs":
        from bniconnect.GCConnection_hlpr import GCConnection
        return GCSImageStore(GCConnection())
    return LocalImageStore(data_dir or DATA_DIR)
