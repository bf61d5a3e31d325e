from google.api_core.exceptions import NotFound
from google.cloud import storage

from bniconnect.google_helpers import GCS_BUCKET_NAME, GCS_PREFIX, PROJECT_ID, _build_creds


class GCConnection:
    def __init__(self, bucket_name: str | None = None, prefix: str | None = None) -> None:
        # ---- env config (shared) ----
        self.PROJECT_ID  = PROJECT_ID
        self.BUCKET_NAME = bucket_name if bucket_name is not None else GCS_BUCKET_NAME
        self.PREFIX      = prefix if prefix is not None else GCS_PREFIX

        if not self.BUCKET_NAME:
            raise RuntimeError("GCS_BUCKET_NAME is required when STORE_BACKEND=gcs")

        # ---- GCP clients ----
        self.bucket_creds = _build_creds()
        self.storage_client = storage.Client(
            project=self.PROJECT_ID or None,
            credentials=self.bucket_creds,
        )
        self.bucket = self.storage_client.bucket(self.BUCKET_NAME)

    def object_path(self, key: str) -> str:
        return f"{self.PREFIX}{key}"

    # -------- Storage helpers --------
    # Blocking calls. Async callers go through asyncio.to_thread.

    def download_text(self, key: str) -> str | None:
        blob = self.bucket.blob(self.object_path(key))
        try:
            return blob.download_as_text(encoding="utf-8")
        except NotFound:
            return None

    def upload_text(self, key: str, text: str, content_type: str = "application/json") -> None:
        blob = self.bucket.blob(self.object_path(key))
        blob.upload_from_string(text, content_type=content_type)

    def upload_bytes(self, key: str, data: bytes, content_type: str = "application/octet-stream"):
        blob_path = self.object_path(key)
        blob = self.bucket.blob(blob_path)
        blob.upload_from_string(data, content_type=content_type)
        return f"gs://{self.BUCKET_NAME}/{blob_path}", f"https://storage.googleapis.com/{self.BUCKET_NAME}/{blob_path}"

    def download_bytes(self, key: str) -> tuple[bytes, str | None] | None:
        """
        Returns (data, content_type) or None when the object does not exist.
        """
        blob = self.bucket.get_blob(self.object_path(key))
        if blob is None:
            return None
        data = blob.download_as_bytes()
        return data, blob.content_type
