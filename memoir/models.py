from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Text, DateTime, Float, JSON,
    CheckConstraint, UniqueConstraint, Index, func,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship
import enum

from .database import Base


class SessionMode(str, enum.Enum):
    guided = "guided"
    non_guided = "non-guided"


class SessionStatus(str, enum.Enum):
    active = "active"
    completed = "completed"


class TurnStatus(str, enum.Enum):
    awaiting_answer = "awaiting_answer"
    answered = "answered"


class RecordingStatus(str, enum.Enum):
    uploaded = "uploaded"
    processed = "processed"


def _enum_values(cls):
    return [m.value for m in cls]


# ---------------------------
# USER MODEL
# ---------------------------
class User(Base):
    __tablename__ = "user"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_superuser = Column(Boolean, default=False, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ---------------------------
# BOOKS (story groups)
# ---------------------------
class StoryGroup(Base):
    __tablename__ = "story_groups"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user.id"), index=True, nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    sessions = relationship("Session", back_populates="story_group")
    stories = relationship("Story", back_populates="story_group")


# ---------------------------
# SESSIONS
# ---------------------------
class Session(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user.id"), index=True, nullable=False)
    story_group_id = Column(Integer, ForeignKey("story_groups.id"), index=True, nullable=True)
    title = Column(String(200), nullable=True)
    mode = Column(SAEnum(SessionMode, values_callable=_enum_values), default=SessionMode.guided, nullable=False)
    category = Column(String, nullable=True)
    themes = Column(JSON, nullable=True)
    persona = Column(String, nullable=True)
    language = Column(String(16), nullable=True)
    status = Column(SAEnum(SessionStatus, values_callable=_enum_values), default=SessionStatus.active, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)

    story_group = relationship("StoryGroup", back_populates="sessions")
    turns = relationship("Turn", order_by="Turn.turn_index.asc()", back_populates="session")


class Recording(Base):
    __tablename__ = "recordings"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), index=True, nullable=False)
    storage_path = Column(String, nullable=False)
    mime_type = Column(String, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    language = Column(String(16), nullable=True)
    status = Column(SAEnum(RecordingStatus, values_callable=_enum_values), default=RecordingStatus.uploaded, nullable=False)
    transcribed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Transcript(Base):
    __tablename__ = "transcripts"

    id = Column(Integer, primary_key=True, index=True)
    recording_id = Column(Integer, ForeignKey("recordings.id"), index=True, nullable=False)
    text = Column(Text, nullable=True)
    word_count = Column(Integer, nullable=True)
    language = Column(String(16), nullable=True)
    model_used = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Turn(Base):
    __tablename__ = "turns"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), index=True, nullable=False)
    turn_index = Column(Integer, nullable=False)
    prompt_text = Column(Text, nullable=True)
    answer_text = Column(Text, nullable=True)
    recording_id = Column(Integer, ForeignKey("recordings.id"), index=True, nullable=True)
    # follow-up produced from this turn's answer: alternatives, topic, speech of the next prompt
    follow_up_suggestions = Column(JSON, nullable=True)
    topic = Column(String, nullable=True)
    tts_audio_path = Column(String, nullable=True)
    status = Column(SAEnum(TurnStatus, values_callable=_enum_values), default=TurnStatus.awaiting_answer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    session = relationship("Session", back_populates="turns")

    __table_args__ = (
        UniqueConstraint("session_id", "turn_index", name="uq_turn_session_index"),
    )


class Chapter(Base):
    __tablename__ = "chapters"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id"), index=True, nullable=False)
    title = Column(String, nullable=True)
    summary = Column(Text, nullable=True)
    overall_summary = Column(Text, nullable=True)
    quotes = Column(JSON, nullable=True)
    image_hints = Column(JSON, nullable=True)
    order_index = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ---------------------------
# STORIES
# ---------------------------
class Story(Base):
    __tablename__ = "stories"

    id = Column(Integer, primary_key=True, index=True)
    story_group_id = Column(Integer, ForeignKey("story_groups.id"), index=True, nullable=False)
    title = Column(String, nullable=True)
    raw_text = Column(Text, nullable=True)
    edited_text = Column(Text, nullable=True)
    approved = Column(Boolean, default=False, nullable=False)
    order_index = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    story_group = relationship("StoryGroup", back_populates="stories")


class StoryEmbedding(Base):
    __tablename__ = "story_embeddings"

    id = Column(Integer, primary_key=True, index=True)
    story_id = Column(Integer, ForeignKey("stories.id"), index=True, nullable=False)
    embedding = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class StoryImage(Base):
    __tablename__ = "story_images"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("user.id"), index=True, nullable=False)
    story_id = Column(Integer, ForeignKey("stories.id"), index=True, nullable=True)
    chapter_id = Column(Integer, ForeignKey("chapters.id"), index=True, nullable=True)
    turn_id = Column(Integer, ForeignKey("turns.id"), index=True, nullable=True)
    storage_path = Column(String, nullable=False)
    thumbnail_path = Column(String, nullable=True)
    file_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    size_bytes = Column(Integer, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    caption = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "story_id IS NOT NULL OR chapter_id IS NOT NULL OR turn_id IS NOT NULL",
            name="ck_story_image_has_owner",
        ),
    )


# ---------------------------
# DELETION TOMBSTONES
# ---------------------------
class DeletionTombstone(Base):
    """Remembers deep-deleted roots so a repeated delete can answer idempotently."""
    __tablename__ = "deletion_tombstones"

    id = Column(Integer, primary_key=True)
    root_type = Column(String(32), nullable=False)  # story_group | session
    root_id = Column(Integer, nullable=False)
    owner_id = Column(Integer, nullable=False)
    deleted_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_tombstone_root", "root_type", "root_id"),
    )
