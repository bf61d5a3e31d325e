# bniconnect/google_helpers.py

import logging
import os

from google.auth import default as google_auth_default
from google.oauth2 import service_account

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
)

logger = logging.getLogger("bni_backend")

# --- Configuration ---
PROJECT_ID = os.getenv("PROJECT_ID", "")

STORE_BACKEND = os.getenv("STORE_BACKEND", "local").strip().lower()   # local | gcs
DATA_DIR = os.getenv("DATA_DIR", os.path.join(os.getcwd(), "data"))
GCS_BUCKET_NAME = os.getenv("GCS_BUCKET_NAME", "")
GCS_PREFIX = os.getenv("GCS_PREFIX", "bni/")

PORT = int(os.getenv("PORT", "8000"))


def _build_creds():
    key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    scopes = ["https://www.googleapis.com/auth/cloud-platform"]
    if key_path and os.path.exists(key_path):
        return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
    creds, _ = google_auth_default(scopes=scopes)
    return creds
