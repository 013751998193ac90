from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from typing import Optional, List, Dict
from fastapi_users import schemas as fu_schemas

from memoir.errors import PartialDeletionError, StoryImageOwnershipError
from memoir.models import SessionMode


# =========================
# USER SCHEMAS
# =========================
class UserRead(fu_schemas.BaseUser[int]):
    display_name: Optional[str] = None


class UserCreate(fu_schemas.BaseUserCreate):
    display_name: Optional[str] = None


class UserUpdate(fu_schemas.BaseUserUpdate):
    display_name: Optional[str] = None


# =========================
# SESSION / TURN SCHEMAS
# =========================
class SessionConfig(BaseModel):
    mode: SessionMode = SessionMode.guided
    category: Optional[str] = None
    themes: List[str] = []
    persona: Optional[str] = None
    language: Optional[str] = None
    story_group_id: Optional[int] = None
    opening_prompt: Optional[str] = None


class FollowUp(BaseModel):
    question: Optional[str] = None
    suggestions: List[str] = []
    tts_url: Optional[str] = None
    topic: Optional[str] = None


class TurnResult(BaseModel):
    """Body returned by the remote upload-and-process endpoint."""
    transcript: Optional[str] = None
    follow_up: FollowUp = Field(default_factory=FollowUp)
    recording_id: Optional[int] = None
    storage_path: Optional[str] = None
    language: Optional[str] = None
    model_used: Optional[str] = None

    @property
    def main_question(self) -> Optional[str]:
        q = (self.follow_up.question or "").strip()
        return q or None


# =========================
# DEEP DELETE SCHEMAS
# =========================
class DeleteBookRequest(BaseModel):
    story_group_id: Optional[int] = Field(default=None, alias="storyGroupId")

    model_config = ConfigDict(populate_by_name=True)


class DeleteSessionRequest(BaseModel):
    session_id: Optional[int] = Field(default=None, alias="sessionId")

    model_config = ConfigDict(populate_by_name=True)


class DeleteReport(BaseModel):
    deleted_counts: Dict[str, int] = Field(default_factory=dict, alias="deletedCounts")
    errors: List[str] = []

    model_config = ConfigDict(populate_by_name=True)

    @computed_field
    @property
    def success(self) -> bool:
        return not self.errors

    @classmethod
    def empty(cls, keys) -> "DeleteReport":
        return cls(deleted_counts={k: 0 for k in keys})

    def add(self, key: str, count: int) -> None:
        self.deleted_counts[key] = self.deleted_counts.get(key, 0) + count

    def raise_for_errors(self) -> None:
        if self.errors:
            raise PartialDeletionError(self.errors)


# =========================
# STORY IMAGE SCHEMAS
# =========================
class StoryImageCreate(BaseModel):
    story_id: Optional[int] = None
    chapter_id: Optional[int] = None
    turn_id: Optional[int] = None
    file_name: str
    mime_type: str = "image/jpeg"
    caption: Optional[str] = None

    @model_validator(mode="after")
    def _require_owner(self):
        if self.story_id is None and self.chapter_id is None and self.turn_id is None:
            raise StoryImageOwnershipError("a story image must belong to a story, a chapter or a turn")
        return self


class StoryImageRead(BaseModel):
    id: int
    story_id: Optional[int] = None
    chapter_id: Optional[int] = None
    turn_id: Optional[int] = None
    storage_path: str
    thumbnail_path: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)
