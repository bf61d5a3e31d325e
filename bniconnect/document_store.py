# bniconnect/document_store.py

import asyncio
import copy
import json
import logging
import os
import uuid

from bniconnect.errors import StoreDegradedError
from bniconnect.google_helpers import DATA_DIR, STORE_BACKEND

logger = logging.getLogger("bni_backend")


class DocumentStore:
    """
    Key/value persistence of whole JSON documents.

    - read(key, fallback): a missing or corrupt document is reset to `fallback`.
    - write(key, value): writes to the same key are queued behind each other
      (one asyncio.Lock per key, FIFO); different keys proceed independently.

    Backends only implement `_get` (raw text or None) and `_set`.
    """

    name = "abstract"

    def __init__(self) -> None:
        self._write_locks: dict[str, asyncio.Lock] = {}

    async def _get(self, key: str) -> str | None:
        raise NotImplementedError

    async def _set(self, key: str, text: str) -> None:
        raise NotImplementedError

    async def read(self, key: str, fallback):
        raw = await self._get(key)
        if raw is None:
            await self.write(key, fallback)
            return copy.deepcopy(fallback)
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("[store:%s] corrupt document %s reset to fallback: %s", self.name, key, e)
            await self.write(key, fallback)
            return copy.deepcopy(fallback)

    async def write(self, key: str, value) -> None:
        # snapshot now: the caller may keep mutating `value` while the write waits its turn
        text = json.dumps(value, indent=2, ensure_ascii=False)
        lock = self._write_locks.setdefault(key, asyncio.Lock())
        async with lock:
            await self._set(key, text)


class LocalFileDocumentStore(DocumentStore):
    name = "local"

    def __init__(self, data_dir: str) -> None:
        super().__init__()
        self.data_dir = data_dir

    def _path(self, key: str) -> str:
        return os.path.join(self.data_dir, key)

    def _read_file(self, key: str) -> str | None:
        try:
            with open(self._path(key), "r", encoding="utf-8") as f:
                return f.read()
        except FileNotFoundError:
            return None

    def _write_file(self, key: str, text: str) -> None:
        path = self._path(key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmp = f"{path}.{os.getpid()}.{uuid.uuid4().hex}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)

    async def _get(self, key: str) -> str | None:
        return await asyncio.to_thread(self._read_file, key)

    async def _set(self, key: str, text: str) -> None:
        await asyncio.to_thread(self._write_file, key, text)


class GCSDocumentStore(DocumentStore):
    """
    Cloud blob backend. Reads may be stale shortly after a write; callers that
    need the fresh value use the mutating operation's own return value.
    """

    name = "gcs"

    def __init__(self, connection) -> None:
        super().__init__()
        self.connection = connection

    async def _get(self, key: str) -> str | None:
        try:
            return await asyncio.to_thread(self.connection.download_text, key)
        except Exception as e:
            raise StoreDegradedError(f"GCS read failed for {key}: {e}") from e

    async def _set(self, key: str, text: str) -> None:
        try:
            await asyncio.to_thread(self.connection.upload_text, key, text)
        except Exception as e:
            raise StoreDegradedError(f"GCS write failed for {key}: {e}") from e


class FallbackDocumentStore:
    """
    Uses `primary` until it raises StoreDegradedError once, then switches to
    `secondary` for the lifetime of the process.
    """

    def __init__(self, primary: DocumentStore, secondary: DocumentStore) -> None:
        self.primary = primary
        self.secondary = secondary
        self.degraded = False

    @property
    def name(self) -> str:
        return self.secondary.name if self.degraded else self.primary.name

    def _degrade(self, e: Exception) -> None:
        if not self.degraded:
            self.degraded = True
            logger.warning(
                "[store] %s unavailable, switching to %s for this process: %s",
                self.primary.name, self.secondary.name, e,
            )

    async def read(self, key: str, fallback):
        if not self.degraded:
            try:
                return await self.primary.read(key, fallback)
            except StoreDegradedError as e:
                self._degrade(e)
        return await self.secondary.read(key, fallback)

    async def write(self, key: str, value) -> None:
        if not self.degraded:
            try:
                await self.primary.write(key, value)
                return
            except StoreDegradedError as e:
                self._degrade(e)
        await self.secondary.write(key, value)


def build_document_store(backend: str | None = None, data_dir: str | None = None):
    backend = (backend or STORE_BACKEND).lower()
    local = LocalFileDocumentStore(data_dir or DATA_DIR)
    if backend == "local":
        logger.info(f"[store] Using local documents in {local.data_dir}")
        return local
    if backend == "gcs":
        from bniconnect.GCConnection_hlpr import GCConnection
        connection = GCConnection()
        logger.info(f"[store] Using GCS bucket {connection.BUCKET_NAME} (prefix {connection.PREFIX!r})")
        return FallbackDocumentStore(GCSDocumentStore(connection), local)
    raise RuntimeError(f"Unknown STORE_BACKEND: {backend!r} (expected 'local' or 'gcs')")
