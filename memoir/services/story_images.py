# memoir/services/story_images.py
"""
Story images: an uploaded picture attached to a story, a chapter or a turn.

Places files under the image bucket:
  <user_id>/<uuid>.<ext>
  <user_id>/thumbs/<uuid>.jpg
"""
from __future__ import annotations

import io
import logging
import uuid
from pathlib import PurePosixPath
from typing import Optional

from PIL import Image, UnidentifiedImageError

from memoir.background import run_sync
from memoir.blob_store import BlobStore
from memoir.data_access import RowStore
from memoir.errors import AuthorizationError, NotFoundError
from memoir.models import Chapter, Session, Story, StoryGroup, StoryImage, Turn
from memoir.schemas import StoryImageCreate
from memoir.settings.config import settings

logger = logging.getLogger(__name__)

THUMB_SIZE = (320, 320)


def make_thumbnail(data: bytes, size: tuple[int, int] = THUMB_SIZE) -> tuple[bytes, int, int]:
    """
    Generate a JPEG thumbnail with Pillow.
    Returns (thumbnail bytes, original width, original height).
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            img.thumbnail(size)
            img = img.convert("RGB")  # ensure JPEG-compatible
            out = io.BytesIO()
            img.save(out, format="JPEG", quality=85)
    except UnidentifiedImageError as e:
        raise ValueError("uploaded file is not a readable image") from e
    return out.getvalue(), width, height


async def _owner_of(store: RowStore, payload: StoryImageCreate) -> Optional[int]:
    """User id owning the first referenced parent; NotFoundError when a reference dangles."""
    owner: Optional[int] = None
    if payload.story_id is not None:
        story = await store.get(Story, payload.story_id)
        if story is None:
            raise NotFoundError(f"story {payload.story_id} not found")
        book = await store.get(StoryGroup, story.story_group_id)
        owner = book.user_id if book else None
    for model, ref in ((Chapter, payload.chapter_id), (Turn, payload.turn_id)):
        if ref is None:
            continue
        row = await store.get(model, ref)
        if row is None:
            raise NotFoundError(f"{model.__tablename__[:-1]} {ref} not found")
        sess = await store.get(Session, row.session_id)
        ref_owner = sess.user_id if sess else None
        if owner is not None and ref_owner != owner:
            raise AuthorizationError("image parents belong to different users")
        owner = ref_owner
    return owner


async def create_story_image(
    store: RowStore,
    blobs: BlobStore,
    user_id: int,
    payload: StoryImageCreate,
    data: bytes,
) -> StoryImage:
    """Validate, upload the image and its thumbnail, then insert the row."""
    owner = await _owner_of(store, payload)
    if owner != user_id:
        raise AuthorizationError("you do not own the item this image is attached to")

    thumb, width, height = await run_sync(make_thumbnail, data)
    ext = PurePosixPath(payload.file_name).suffix.lower() or ".jpg"
    stem = uuid.uuid4().hex
    path = f"{user_id}/{stem}{ext}"
    thumb_path = f"{user_id}/thumbs/{stem}.jpg"

    await run_sync(blobs.upload, settings.IMAGE_BUCKET, path, data, content_type=payload.mime_type)
    try:
        await run_sync(blobs.upload, settings.IMAGE_BUCKET, thumb_path, thumb, content_type="image/jpeg")
    except Exception:
        await run_sync(blobs.remove, settings.IMAGE_BUCKET, [path])
        raise

    image = StoryImage(
        user_id=user_id,
        story_id=payload.story_id,
        chapter_id=payload.chapter_id,
        turn_id=payload.turn_id,
        storage_path=path,
        thumbnail_path=thumb_path,
        file_name=payload.file_name,
        mime_type=payload.mime_type,
        size_bytes=len(data),
        width=width,
        height=height,
        caption=payload.caption,
    )
    try:
        await store.insert(image)
    except Exception:
        # row failed: do not leave unreferenced files behind
        await run_sync(blobs.remove, settings.IMAGE_BUCKET, [path, thumb_path])
        raise
    logger.info("Story image %s stored for user %s (%dx%d)", image.id, user_id, width, height)
    return image


__all__ = ["create_story_image", "make_thumbnail", "THUMB_SIZE"]
