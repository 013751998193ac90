from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse

from memoir.blob_store import BlobStore
from memoir.errors import BlobStoreError
from memoir.routes_shared import get_blob_store

router = APIRouter(tags=["storage"])


@router.get("/storage/{bucket}/{path:path}")
async def signed_download(
    bucket: str,
    path: str,
    expires: int = Query(...),
    sig: str = Query(...),
    blobs: BlobStore = Depends(get_blob_store),
):
    """Serve a blob addressed by a signed URL (see BlobStore.create_signed_url)."""
    if not blobs.verify_signature(bucket, path, expires, sig):
        raise HTTPException(status_code=403, detail="Invalid or expired link")
    try:
        location = blobs.resolve(bucket, path)
    except BlobStoreError:
        raise HTTPException(status_code=404, detail="Not found")
    if not location.is_file():
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(location)
