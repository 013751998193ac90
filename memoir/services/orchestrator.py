# memoir/services/orchestrator.py
"""
Session orchestrator: owns one live recording session.

The UI only observes `SessionState` (via subscribe) and issues the narrow
command set below; every transition goes through this class.

    idle -> listening -> thinking -> (speaking | idle | error)
    paused is reachable from any state; error from listening/thinking.

Persisted rows per answered turn:
  audio blob -> Recording -> answer on the pending Turn -> Transcript
  -> next prompt-only Turn -> Recording.status=processed -> Session.last_activity_at
"""
from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from memoir.background import TaskSupervisor, run_sync
from memoir.blob_store import BlobStore
from memoir.data_access import RowStore
from memoir.errors import (
    AudioCaptureError,
    AuthenticationError,
    AuthorizationError,
    BlobStoreError,
    NetworkError,
    NotFoundError,
    RecordingCancelled,
    SessionStateError,
    TtsUnavailableError,
    TurnInProgressError,
)
from memoir.models import (
    Recording,
    RecordingStatus,
    Session,
    SessionStatus,
    StoryGroup,
    Transcript,
    Turn,
    TurnStatus,
)
from memoir.schemas import SessionConfig, TurnResult
from memoir.services.recorder import Recorder
from memoir.settings.config import settings

logger = logging.getLogger(__name__)

TRANSCRIPTION_PENDING = "[transcription pending]"

STARTER_QUESTIONS = {
    None: "Tell me about your earliest childhood memory.",
    "Childhood & Early Memories": "What was your neighborhood like when you were growing up?",
    "Family & Relationships": "Who was the most influential person in your early life?",
    "Traditions & Culture": "What family traditions did you have growing up?",
    "Hardship, Loss & Healing": "Tell me about a time when you overcame a significant challenge.",
}


def starter_question(category: Optional[str]) -> str:
    return STARTER_QUESTIONS.get(category) or STARTER_QUESTIONS[None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClientStatus(str, enum.Enum):
    idle = "idle"
    listening = "listening"
    thinking = "thinking"
    speaking = "speaking"
    paused = "paused"
    error = "error"


class TtsState(str, enum.Enum):
    none = "none"
    pending = "pending"
    ready = "ready"
    unavailable = "unavailable"


@dataclass
class Message:
    role: str  # "assistant" | "user"
    content: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    turn_index: Optional[int] = None
    alternatives: List[str] = field(default_factory=list)
    # assistant prompts: recording whose processing produced this prompt (its turn row carries the speech)
    recording_id: Optional[int] = None
    audio_url: Optional[str] = None
    tts: TtsState = TtsState.none
    transcription_pending: bool = False


@dataclass
class PendingTurn:
    """Captured audio kept until the backend has accepted it."""
    audio: object  # CapturedAudio
    storage_path: Optional[str] = None
    recording_id: Optional[int] = None
    # backend answer already received; a retry only has to persist it
    result: Optional[TurnResult] = None


@dataclass
class TurnOutcome:
    user_message: Message
    ai_message: Optional[Message]


@dataclass
class SessionState:
    session_id: Optional[int] = None
    status: ClientStatus = ClientStatus.idle
    paused_from: Optional[ClientStatus] = None
    persisted_status: Optional[SessionStatus] = None
    language: str = settings.DEFAULT_LANGUAGE
    messages: List[Message] = field(default_factory=list)
    current_prompt: Optional[str] = None
    current_turn_index: Optional[int] = None  # index of the prompt-only turn awaiting an answer
    next_turn_index: int = 0
    conversation_complete: bool = False
    has_network_error: bool = False
    last_error: Optional[str] = None
    pending: Optional[PendingTurn] = None
    chapter_generation: Optional[str] = None  # pending | succeeded | failed
    chapter_error: Optional[str] = None


def replay_turns(turns: Sequence[Turn], sign: Optional[Callable[[str], Optional[str]]] = None) -> List[Message]:
    """
    Rebuild the conversation from persisted turns (already ordered by turn_index).
    Each turn yields its prompt (assistant) then its answer (user); a turn with a
    prompt but no answer yet contributes only the prompt.
    """
    messages: List[Message] = []
    prev: Optional[Turn] = None
    for t in turns:
        prompt = (t.prompt_text or "").strip()
        if prompt:
            ai = Message(role="assistant", content=prompt, turn_index=t.turn_index)
            if prev is not None:
                ai.alternatives = list(prev.follow_up_suggestions or [])
                ai.recording_id = prev.recording_id
                if prev.tts_audio_path:
                    ai.audio_url = sign(prev.tts_audio_path) if sign else None
                    ai.tts = TtsState.ready if ai.audio_url or not sign else TtsState.unavailable
            messages.append(ai)
        answer = (t.answer_text or "").strip()
        if answer:
            messages.append(Message(role="user", content=answer, turn_index=t.turn_index))
        elif t.status == TurnStatus.answered:
            messages.append(Message(role="user", content=TRANSCRIPTION_PENDING,
                                    turn_index=t.turn_index, transcription_pending=True))
        prev = t
    return messages


class SessionOrchestrator:
    def __init__(
        self,
        *,
        session_factory,
        blobs: BlobStore,
        backend,
        recorder: Recorder,
        user_id: Optional[int],
        access_token: Optional[str],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._session_factory = session_factory
        self.blobs = blobs
        self.backend = backend
        self.recorder = recorder
        self.user_id = user_id
        self.access_token = access_token
        self._sleep = sleep
        self.state = SessionState()
        self._turn_lock = asyncio.Lock()
        self._tts_tasks = TaskSupervisor("tts")
        self._followups = TaskSupervisor("session")
        self._listeners: List[Callable[[SessionState], None]] = []

    # ------------------------------------------------------------------
    # observation
    # ------------------------------------------------------------------
    def subscribe(self, callback: Callable[[SessionState], None]) -> Callable[[], None]:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return _unsubscribe

    def _emit(self) -> None:
        for cb in list(self._listeners):
            try:
                cb(self.state)
            except Exception:  # noqa: BLE001
                logger.exception("session listener failed")

    def _set_status(self, status: ClientStatus) -> None:
        if self.state.status != status:
            logger.debug("session %s: %s -> %s", self.state.session_id, self.state.status.value, status.value)
        self.state.status = status
        self._emit()

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    @asynccontextmanager
    async def _rows(self):
        async with self._session_factory() as db:
            yield RowStore(db)

    def _require_credentials(self) -> None:
        if self.user_id is None or not self.access_token:
            raise AuthenticationError("sign in again to continue")

    def _require_session(self) -> int:
        if self.state.session_id is None:
            raise SessionStateError("no session started")
        return self.state.session_id

    def _message(self, message_id: str) -> Message:
        for m in self.state.messages:
            if m.id == message_id:
                return m
        raise SessionStateError(f"unknown message {message_id}")

    def tts_delay(self, attempt: int) -> float:
        return min(settings.TTS_POLL_BASE_DELAY + settings.TTS_POLL_STEP * attempt, settings.TTS_POLL_MAX_DELAY)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def start_session(self, config: SessionConfig | None = None, session_id: Optional[int] = None) -> int:
        """Create the session row (plus its opening prompt) or resume the given one."""
        self._require_credentials()
        if session_id is not None:
            if session_id != self.state.session_id:
                await self.resume_session(session_id)
            return session_id
        if self.state.session_id is not None:
            return self.state.session_id

        config = config or SessionConfig()
        language = config.language or settings.DEFAULT_LANGUAGE
        opening = (config.opening_prompt or "").strip() or starter_question(config.category)
        now = _utcnow()

        try:
            async with self._rows() as rows:
                if config.story_group_id is not None:
                    book = await rows.get(StoryGroup, config.story_group_id)
                    if book is None:
                        raise NotFoundError(f"book {config.story_group_id} not found")
                    if book.user_id != self.user_id:
                        raise AuthorizationError("you do not own this book")
                sess = Session(
                    user_id=self.user_id,
                    story_group_id=config.story_group_id,
                    mode=config.mode,
                    category=config.category,
                    themes=list(config.themes),
                    persona=config.persona or settings.DEFAULT_PERSONA,
                    language=language,
                    status=SessionStatus.active,
                    started_at=now,
                    last_activity_at=now,
                )
                await rows.insert(sess)
                sid = sess.id
                await rows.insert(Turn(session_id=sid, turn_index=0, prompt_text=opening,
                                       status=TurnStatus.awaiting_answer))
        except SQLAlchemyError as e:
            raise NetworkError(f"could not start session: {e}") from e

        self.state = SessionState(
            session_id=sid,
            persisted_status=SessionStatus.active,
            language=language,
            messages=[Message(role="assistant", content=opening, turn_index=0)],
            current_prompt=opening,
            current_turn_index=0,
            next_turn_index=1,
        )
        logger.info("Session %s started for user %s (mode=%s)", sid, self.user_id, config.mode.value)
        self._emit()
        return sid

    async def resume_session(self, session_id: int) -> SessionState:
        self._require_credentials()
        async with self._rows() as rows:
            sess = await rows.get(Session, session_id)
            if sess is None:
                raise NotFoundError(f"session {session_id} not found")
            if sess.user_id != self.user_id:
                raise AuthorizationError("you do not own this session")
            turns = await rows.select(Turn, order_by=Turn.turn_index.asc(), session_id=session_id)
            persisted = sess.status
            language = sess.language or settings.DEFAULT_LANGUAGE

        def _sign(path: str) -> Optional[str]:
            try:
                return self.blobs.create_signed_url(settings.AUDIO_BUCKET, path, settings.SIGNED_URL_TTL_SECONDS)
            except BlobStoreError:
                return None

        messages = await run_sync(replay_turns, turns, _sign)
        last = turns[-1] if turns else None
        awaiting = last is not None and last.status == TurnStatus.awaiting_answer
        ai_messages = [m for m in messages if m.role == "assistant"]

        self.state = SessionState(
            session_id=session_id,
            persisted_status=persisted,
            language=language,
            messages=messages,
            current_prompt=ai_messages[-1].content if ai_messages else None,
            current_turn_index=last.turn_index if awaiting else None,
            next_turn_index=(last.turn_index + 1) if last is not None else 0,
            conversation_complete=last is not None and not awaiting,
        )
        logger.info("Session %s resumed with %d turns", session_id, len(turns))
        self._emit()
        return self.state

    # ------------------------------------------------------------------
    # turns
    # ------------------------------------------------------------------
    def _ensure_recordable(self) -> None:
        self._require_session()
        if self.state.persisted_status == SessionStatus.completed:
            raise SessionStateError("session already completed")
        if self.state.status == ClientStatus.paused:
            raise SessionStateError("session is paused")
        if self.state.conversation_complete:
            raise SessionStateError("no further questions; save the session to finish")

    async def record_turn(self) -> Optional[TurnOutcome]:
        """
        Capture one answer and run it through upload + inference.
        Returns None when the capture was cancelled.
        """
        self._ensure_recordable()
        if self._turn_lock.locked():
            raise TurnInProgressError("a turn is already being recorded")
        if self.state.pending is not None:
            raise SessionStateError("the last answer was not sent yet; retry or discard it first")
        async with self._turn_lock:
            self._set_status(ClientStatus.listening)
            try:
                await self.recorder.start()
                audio = await self.recorder.stop()
            except RecordingCancelled:
                logger.info("Session %s: recording cancelled", self.state.session_id)
                self._set_status(ClientStatus.idle)
                return None
            except AudioCaptureError as e:
                self.state.last_error = str(e)
                self._set_status(ClientStatus.idle)
                raise
            self.state.pending = PendingTurn(audio=audio)
            return await self._submit_pending()

    async def retry_turn(self) -> TurnOutcome:
        """Re-submit the audio kept from a failed turn."""
        self._require_session()
        if self.state.pending is None:
            raise SessionStateError("nothing to retry")
        if self._turn_lock.locked():
            raise TurnInProgressError("a turn is already being recorded")
        async with self._turn_lock:
            return await self._submit_pending()

    async def discard_pending(self) -> None:
        """Drop the answer kept from a failed turn, along with its blob and recording row."""
        self._require_session()
        pending = self.state.pending
        if pending is None:
            return
        if self._turn_lock.locked():
            raise TurnInProgressError("the kept answer is being submitted")
        if pending.recording_id is not None:
            try:
                async with self._rows() as rows:
                    await rows.delete_in(Recording, "id", [pending.recording_id])
            except SQLAlchemyError as e:
                raise NetworkError(f"could not discard recording: {e}") from e
        if pending.storage_path is not None:
            try:
                await run_sync(self.blobs.remove, settings.AUDIO_BUCKET, [pending.storage_path])
            except BlobStoreError as e:
                logger.warning("Session %s: discarded audio %s not removed: %s",
                               self.state.session_id, pending.storage_path, e)
        logger.info("Session %s: discarded unsent answer (recording %s)",
                    self.state.session_id, pending.recording_id)
        self.state.pending = None
        self.state.has_network_error = False
        self.state.last_error = None
        self._set_status(ClientStatus.idle)

    async def choose_alternative(self, message_id: str, index: int) -> str:
        """
        Swap the prompt awaiting an answer for one of its suggested alternatives.
        The replaced question takes the alternative's slot.
        """
        sid = self._require_session()
        msg = self._message(message_id)
        if (msg.role != "assistant" or msg.turn_index is None
                or msg.turn_index != self.state.current_turn_index):
            raise SessionStateError("only the prompt awaiting an answer can be switched")
        if self._turn_lock.locked() or self.state.pending is not None:
            raise TurnInProgressError("an answer to this prompt is already in flight")
        if not 0 <= index < len(msg.alternatives):
            raise SessionStateError(f"no alternative question #{index}")

        chosen = msg.alternatives[index]
        try:
            async with self._rows() as rows:
                await rows.update(Turn, {"prompt_text": chosen}, session_id=sid,
                                  turn_index=msg.turn_index, status=TurnStatus.awaiting_answer)
        except SQLAlchemyError as e:
            raise NetworkError(f"could not switch question: {e}") from e

        await self._tts_tasks.cancel_all()
        msg.alternatives[index] = msg.content
        msg.content = chosen
        # synthesized speech belonged to the old wording
        msg.audio_url = None
        msg.tts = TtsState.none
        self.state.current_prompt = chosen
        if self.state.status == ClientStatus.speaking:
            self._set_status(ClientStatus.idle)
        else:
            self._emit()
        return chosen

    def cancel_recording(self) -> None:
        if self.state.status == ClientStatus.listening:
            self.recorder.cancel()

    async def _submit_pending(self) -> TurnOutcome:
        sid = self._require_session()
        pending = self.state.pending
        self.state.has_network_error = False
        self.state.last_error = None
        self._set_status(ClientStatus.thinking)
        audio = pending.audio
        try:
            if pending.storage_path is None:
                path = f"{self.user_id}/{sid}/{uuid.uuid4().hex}.{audio.extension}"
                await run_sync(self.blobs.upload, settings.AUDIO_BUCKET, path, audio.data,
                               content_type=audio.mime_type)
                pending.storage_path = path
            if pending.recording_id is None:
                async with self._rows() as rows:
                    rec = Recording(
                        session_id=sid,
                        storage_path=pending.storage_path,
                        mime_type=audio.mime_type,
                        duration_seconds=audio.duration_seconds,
                        language=self.state.language,
                        status=RecordingStatus.uploaded,
                    )
                    await rows.insert(rec)
                    pending.recording_id = rec.id
            if pending.result is None:
                pending.result = await self.backend.upload_and_process(
                    self.access_token,
                    session_id=sid,
                    recording_id=pending.recording_id,
                    storage_path=pending.storage_path,
                    duration_seconds=audio.duration_seconds,
                    mime_type=audio.mime_type,
                    language=self.state.language,
                    prompt_text=self.state.current_prompt,
                )
            outcome = await self._apply_turn_result(pending, pending.result)
        except (BlobStoreError, NetworkError, SQLAlchemyError) as e:
            self.state.has_network_error = True
            self.state.last_error = str(e)
            logger.warning("Session %s: turn failed, audio kept for retry: %s", sid, e)
            self._set_status(ClientStatus.error)
            if isinstance(e, NetworkError):
                raise
            raise NetworkError(str(e)) from e
        except AuthenticationError as e:
            self.state.last_error = str(e)
            self._set_status(ClientStatus.error)
            raise
        return outcome

    async def _apply_turn_result(self, pending: PendingTurn, result: TurnResult) -> TurnOutcome:
        sid = self.state.session_id
        transcript = (result.transcript or "").strip()
        question = result.main_question
        suggestions = [s for s in (result.follow_up.suggestions or []) if s and s.strip()]
        answer_index = self.state.current_turn_index
        if answer_index is None:
            answer_index = self.state.next_turn_index
        now = _utcnow()
        rec_id = pending.recording_id

        # all-or-nothing: a half-written turn would leave the session unresumable
        async with self._rows() as rows, rows.transaction():
            answered = {
                "answer_text": transcript or None,
                "recording_id": rec_id,
                "follow_up_suggestions": suggestions,
                "topic": result.follow_up.topic,
                "status": TurnStatus.answered,
            }
            if self.state.current_turn_index is not None:
                await rows.update(Turn, answered, session_id=sid, turn_index=answer_index)
            else:
                await rows.insert(Turn(session_id=sid, turn_index=answer_index,
                                       prompt_text=self.state.current_prompt, **answered))
            if transcript and await rows.first(Transcript, recording_id=rec_id) is None:
                await rows.insert(Transcript(
                    recording_id=rec_id,
                    text=transcript,
                    word_count=len(transcript.split()),
                    language=result.language or self.state.language,
                    model_used=result.model_used,
                ))
            await rows.update(Recording, {"status": RecordingStatus.processed, "transcribed_at": now}, id=rec_id)
            if question:
                await rows.insert(Turn(session_id=sid, turn_index=answer_index + 1, prompt_text=question,
                                       status=TurnStatus.awaiting_answer))
            await rows.update(Session, {"last_activity_at": now}, id=sid)

        user_msg = Message(
            role="user",
            content=transcript or TRANSCRIPTION_PENDING,
            turn_index=answer_index,
            transcription_pending=not transcript,
        )
        self.state.messages.append(user_msg)
        self.state.pending = None

        ai_msg: Optional[Message] = None
        if question:
            ai_msg = Message(role="assistant", content=question, turn_index=answer_index + 1,
                             alternatives=suggestions, recording_id=rec_id)
            self.state.messages.append(ai_msg)
            self.state.current_prompt = question
            self.state.current_turn_index = answer_index + 1
            self.state.next_turn_index = answer_index + 2
            if result.follow_up.tts_url:
                ai_msg.audio_url = result.follow_up.tts_url
                ai_msg.tts = TtsState.ready
                self._set_status(ClientStatus.speaking)
            else:
                ai_msg.tts = TtsState.pending
                self._set_status(ClientStatus.idle)
                self.schedule_tts(ai_msg.id, rec_id, autoplay=True)
        else:
            # the backend has nothing more to ask: stop here instead of re-asking the old prompt
            logger.info("Session %s: conversation complete after turn %d", sid, answer_index)
            self.state.conversation_complete = True
            self.state.current_prompt = None
            self.state.current_turn_index = None
            self.state.next_turn_index = answer_index + 1
            self._set_status(ClientStatus.idle)
        return TurnOutcome(user_message=user_msg, ai_message=ai_msg)

    def playback_finished(self) -> None:
        if self.state.status == ClientStatus.speaking:
            self._set_status(ClientStatus.idle)

    # ------------------------------------------------------------------
    # TTS resolution
    # ------------------------------------------------------------------
    async def _fetch_tts_path(self, recording_id: int) -> Optional[str]:
        try:
            async with self._rows() as rows:
                turn = await rows.first(Turn, session_id=self.state.session_id, recording_id=recording_id)
                return turn.tts_audio_path if turn is not None else None
        except SQLAlchemyError as e:
            logger.warning("TTS poll for recording %s failed: %s", recording_id, e)
            return None

    async def resolve_tts(self, message_id: str, recording_id: int, *, autoplay: bool = False) -> str:
        """
        Poll the turn row until the pipeline has written the speech path, then
        swap it for a signed playback URL. Raises TtsUnavailableError once the
        attempt budget is used up.
        """
        msg = self._message(message_id)
        msg.tts = TtsState.pending
        self._emit()
        attempts = settings.TTS_POLL_MAX_ATTEMPTS
        for attempt in range(attempts):
            path = await self._fetch_tts_path(recording_id)
            if path:
                try:
                    url = await run_sync(self.blobs.create_signed_url, settings.AUDIO_BUCKET, path,
                                         settings.SIGNED_URL_TTL_SECONDS)
                except BlobStoreError as e:
                    logger.debug("TTS path %s not readable yet: %s", path, e)
                else:
                    msg.audio_url = url
                    msg.tts = TtsState.ready
                    logger.debug("TTS for recording %s ready after %d attempt(s)", recording_id, attempt + 1)
                    if autoplay and self.state.status == ClientStatus.idle:
                        self._set_status(ClientStatus.speaking)
                    else:
                        self._emit()
                    return url
            if attempt < attempts - 1:
                await self._sleep(self.tts_delay(attempt))

        msg.tts = TtsState.unavailable
        logger.info("Audio not ready for recording %s after %d attempts", recording_id, attempts)
        self._emit()
        raise TtsUnavailableError(recording_id, attempts)

    async def _resolve_tts_quietly(self, message_id: str, recording_id: int, autoplay: bool) -> Optional[str]:
        try:
            return await self.resolve_tts(message_id, recording_id, autoplay=autoplay)
        except TtsUnavailableError:
            return None

    def schedule_tts(self, message_id: str, recording_id: int, *, autoplay: bool = False) -> asyncio.Task:
        return self._tts_tasks.spawn(
            self._resolve_tts_quietly(message_id, recording_id, autoplay),
            name=f"tts-{recording_id}",
        )

    async def retry_tts(self, message_id: str) -> str:
        msg = self._message(message_id)
        if msg.recording_id is None:
            raise SessionStateError("this prompt has no synthesized audio")
        return await self.resolve_tts(message_id, msg.recording_id)

    # ------------------------------------------------------------------
    # pause / exit
    # ------------------------------------------------------------------
    def pause(self) -> None:
        if self.state.status != ClientStatus.paused:
            self.state.paused_from = self.state.status
            self._set_status(ClientStatus.paused)

    def unpause(self) -> None:
        if self.state.status == ClientStatus.paused:
            previous = self.state.paused_from or ClientStatus.idle
            self.state.paused_from = None
            self._set_status(previous)

    async def teardown(self) -> None:
        """Cancel in-flight TTS polls; chapter generation keeps running."""
        cancelled = await self._tts_tasks.cancel_all()
        if cancelled:
            logger.debug("Session %s: cancelled %d TTS poll(s)", self.state.session_id, cancelled)

    async def wait_for_background(self) -> None:
        await self._tts_tasks.wait()
        await self._followups.wait()

    async def end_session(self) -> asyncio.Task:
        """
        Mark the session completed, then start chapter generation as a separate,
        best-effort step. Returns the chapter generation task.
        """
        self._require_credentials()
        sid = self._require_session()
        if self.state.persisted_status != SessionStatus.completed:
            try:
                async with self._rows() as rows:
                    # only active -> completed; never the other way round
                    await rows.update(Session, {"status": SessionStatus.completed, "ended_at": _utcnow()},
                                      id=sid, status=SessionStatus.active)
            except SQLAlchemyError as e:
                raise NetworkError(f"could not save session: {e}") from e
            self.state.persisted_status = SessionStatus.completed
            logger.info("Session %s completed", sid)
        await self.teardown()
        self.state.chapter_generation = "pending"
        self.state.chapter_error = None
        self._set_status(ClientStatus.idle)
        return self._followups.spawn(self._generate_chapters(sid), name=f"chapters-{sid}")

    async def _generate_chapters(self, sid: int) -> bool:
        try:
            await self.backend.generate_chapters(self.access_token, sid)
        except (NetworkError, AuthenticationError) as e:
            self.state.chapter_generation = "failed"
            self.state.chapter_error = str(e)
            logger.warning("Chapter generation for session %s failed: %s", sid, e)
            self._emit()
            return False
        self.state.chapter_generation = "succeeded"
        logger.info("Chapters generated for session %s", sid)
        self._emit()
        return True

    async def retry_chapter_generation(self) -> bool:
        sid = self._require_session()
        if self.state.persisted_status != SessionStatus.completed:
            raise SessionStateError("save the session before generating chapters")
        self.state.chapter_generation = "pending"
        self._emit()
        return await self._generate_chapters(sid)

    async def assemble_story(self):
        self._require_credentials()
        sid = self._require_session()
        if self.state.persisted_status != SessionStatus.completed:
            raise SessionStateError("save the session before assembling a story")
        return await self.backend.assemble_story(self.access_token, sid)

    async def save_and_exit(self) -> asyncio.Task:
        self.cancel_recording()
        return await self.end_session()

    async def cancel_and_exit(self) -> None:
        """Leave without finishing: the session stays active and can be resumed later."""
        self.cancel_recording()
        await self.teardown()
        sid = self.state.session_id
        self.state = SessionState()
        logger.info("Left session %s without saving", sid)
        self._emit()


__all__ = [
    "ClientStatus",
    "TtsState",
    "Message",
    "SessionState",
    "TurnOutcome",
    "SessionOrchestrator",
    "replay_turns",
    "starter_question",
    "TRANSCRIPTION_PENDING",
]
