"""Bucketed object storage on the local filesystem.

Places files under:
  <root>/<bucket>/<path>
e.g. recordings/<user_id>/<session_id>/<uuid>.webm
     story_images/<user_id>/<uuid>.jpg  (+ thumbs/<uuid>.jpg)
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import quote, urlencode

from memoir.errors import BlobStoreError

logger = logging.getLogger(__name__)


class BlobStore:
    def __init__(self, root: Path | str, signing_key: str | bytes, *, url_prefix: str = "/storage"):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self._key = signing_key.encode() if isinstance(signing_key, str) else signing_key
        self.url_prefix = url_prefix.rstrip("/")

    # ---- path helpers ------------------------------------------------------
    def _bucket_root(self, bucket: str) -> Path:
        if not bucket or "/" in bucket or bucket in (".", ".."):
            raise BlobStoreError(f"invalid bucket name: {bucket!r}")
        return self.root / bucket

    def resolve(self, bucket: str, path: str) -> Path:
        """Absolute location of bucket/path; refuses anything escaping the bucket."""
        broot = self._bucket_root(bucket).resolve()
        rel = (path or "").lstrip("/").replace("\\", "/")
        if not rel:
            raise BlobStoreError("empty storage path")
        abspath = (broot / rel).resolve()
        if broot not in abspath.parents:
            raise BlobStoreError(f"path escapes bucket {bucket}: {path!r}")
        return abspath

    # ---- operations --------------------------------------------------------
    def upload(self, bucket: str, path: str, data: bytes, *, content_type: Optional[str] = None) -> str:
        abspath = self.resolve(bucket, path)
        try:
            abspath.parent.mkdir(parents=True, exist_ok=True)
            abspath.write_bytes(data)
        except OSError as e:
            raise BlobStoreError(f"upload to {bucket}/{path} failed: {e}") from e
        logger.debug("stored %s/%s (%d bytes, %s)", bucket, path, len(data), content_type or "n/a")
        return path

    def exists(self, bucket: str, path: str) -> bool:
        try:
            return self.resolve(bucket, path).is_file()
        except BlobStoreError:
            return False

    def remove(self, bucket: str, paths: Iterable[str]) -> int:
        """
        Delete the given objects. Missing objects are skipped, so repeating a
        removal is harmless. Returns how many files were actually deleted.
        """
        broot = self._bucket_root(bucket).resolve()
        removed = 0
        failures: list[str] = []
        for p in paths:
            if not p:
                continue
            try:
                abspath = self.resolve(bucket, p)
                if abspath.exists():
                    abspath.unlink()
                    removed += 1
                    # prune empty folders up to the bucket root
                    cur = abspath.parent
                    while cur != broot and broot in cur.parents:
                        try:
                            cur.rmdir()
                        except OSError:
                            break
                        cur = cur.parent
            except (OSError, BlobStoreError) as e:
                failures.append(f"{p}: {e}")
        if failures:
            raise BlobStoreError(f"could not remove {len(failures)} object(s) from {bucket}: {failures[0]}")
        return removed

    # ---- signed urls -------------------------------------------------------
    def _signature(self, bucket: str, path: str, expires: int) -> str:
        raw = f"{bucket}/{path}:{expires}".encode()
        sig = hmac.new(self._key, raw, hashlib.sha256).digest()
        return base64.urlsafe_b64encode(sig).decode().rstrip("=")

    def create_signed_url(self, bucket: str, path: str, ttl_seconds: int, *, now: float | None = None) -> str:
        if not self.exists(bucket, path):
            raise BlobStoreError(f"object not found: {bucket}/{path}")
        expires = int((now if now is not None else time.time()) + ttl_seconds)
        query = urlencode({"expires": expires, "sig": self._signature(bucket, path, expires)})
        return f"{self.url_prefix}/{bucket}/{quote(path)}?{query}"

    def verify_signature(self, bucket: str, path: str, expires: int, sig: str, *, now: float | None = None) -> bool:
        if expires < (now if now is not None else time.time()):
            return False
        return hmac.compare_digest(self._signature(bucket, path, expires), sig or "")


__all__ = ["BlobStore"]
