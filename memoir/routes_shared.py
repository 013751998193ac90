from pathlib import Path as FSPath

from memoir.blob_store import BlobStore
from memoir.settings.config import settings
from memoir.users import SECRET

BASE_DIR = FSPath(__file__).resolve().parents[1]

BLOBS = BlobStore(root=BASE_DIR / settings.STORAGE_ROOT, signing_key=SECRET)


def get_blob_store() -> BlobStore:
    return BLOBS


__all__ = ["BASE_DIR", "BLOBS", "get_blob_store"]
