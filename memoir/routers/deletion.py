from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from memoir.blob_store import BlobStore
from memoir.data_access import RowStore
from memoir.database import get_db
from memoir.errors import AuthorizationError, NotFoundError
from memoir.models import User
from memoir.routes_shared import get_blob_store
from memoir.schemas import DeleteBookRequest, DeleteReport, DeleteSessionRequest
from memoir.services.cascade_delete import delete_book, delete_session
from memoir.users import current_active_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["deletion"])


@router.post("/delete-book-deep", response_model=DeleteReport, response_model_by_alias=True)
async def delete_book_deep(
    body: DeleteBookRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_db),
    blobs: BlobStore = Depends(get_blob_store),
):
    if not body.story_group_id:
        raise HTTPException(status_code=400, detail="Missing storyGroupId")
    try:
        return await delete_book(RowStore(db), blobs, body.story_group_id, user.id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Story group not found")
    except AuthorizationError:
        raise HTTPException(status_code=403, detail="Unauthorized: You do not own this book")


@router.post("/delete-session-deep", response_model=DeleteReport, response_model_by_alias=True)
async def delete_session_deep(
    body: DeleteSessionRequest,
    user: User = Depends(current_active_user),
    db: AsyncSession = Depends(get_db),
    blobs: BlobStore = Depends(get_blob_store),
):
    if not body.session_id:
        raise HTTPException(status_code=400, detail="Missing sessionId")
    try:
        return await delete_session(RowStore(db), blobs, body.session_id, user.id)
    except NotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    except AuthorizationError:
        raise HTTPException(status_code=403, detail="Unauthorized: You do not own this session")
