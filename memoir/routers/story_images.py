from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from memoir.blob_store import BlobStore
from memoir.data_access import RowStore
from memoir.database import get_db
from memoir.errors import AuthorizationError, NotFoundError
from memoir.models import User
from memoir.routes_shared import get_blob_store
from memoir.schemas import StoryImageCreate, StoryImageRead
from memoir.services.story_images import create_story_image
from memoir.users import current_active_user

router = APIRouter(prefix="/api/story-images", tags=["story-images"])


@router.post("", response_model=StoryImageRead, status_code=201)
async def upload_story_image(
    file: UploadFile = File(...),
    story_id: Optional[int] = Form(None),
    chapter_id: Optional[int] = Form(None),
    turn_id: Optional[int] = Form(None),
    caption: Optional[str] = Form(None),
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_db),
    blobs: BlobStore = Depends(get_blob_store),
):
    try:
        payload = StoryImageCreate(
            story_id=story_id,
            chapter_id=chapter_id,
            turn_id=turn_id,
            file_name=file.filename or "image.jpg",
            mime_type=file.content_type or "image/jpeg",
            caption=caption,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e.errors()[0].get("msg", e)))
    data = await file.read()
    try:
        return await create_story_image(RowStore(db), blobs, user.id, payload, data)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
