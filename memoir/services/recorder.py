# memoir/services/recorder.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol

from memoir.errors import AudioCaptureError, RecordingCancelled

_EXT_BY_MIME = {
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/mpeg": "mp3",
    "audio/mp4": "m4a",
}


@dataclass
class CapturedAudio:
    data: bytes
    mime_type: str = "audio/webm"
    duration_seconds: Optional[float] = None

    @property
    def extension(self) -> str:
        base = self.mime_type.split(";", 1)[0].strip().lower()
        return _EXT_BY_MIME.get(base, "bin")


class Recorder(Protocol):
    """Captures one turn of microphone audio into a finite buffer."""

    async def start(self) -> None: ...

    async def stop(self) -> CapturedAudio:
        """Suspend until the user stops, then hand back the buffer.

        Raises RecordingCancelled if cancel() was called meanwhile."""
        ...

    def cancel(self) -> None: ...


class BufferedRecorder:
    """
    Recorder fed by the capture layer: audio chunks arrive through feed(),
    finish() marks the user's stop. stop() waits for either finish() or cancel().
    """

    def __init__(self, mime_type: str = "audio/webm", *, bytes_per_second: int | None = None):
        self.mime_type = mime_type
        self.bytes_per_second = bytes_per_second
        self._chunks: list[bytes] = []
        self._active = False
        self._done: asyncio.Event | None = None
        self._cancelled = False

    @property
    def is_recording(self) -> bool:
        return self._active

    async def start(self) -> None:
        if self._active:
            raise AudioCaptureError("recorder already running")
        self._chunks = []
        self._cancelled = False
        self._done = asyncio.Event()
        self._active = True

    def feed(self, chunk: bytes) -> None:
        if not self._active:
            raise AudioCaptureError("recorder is not running")
        if chunk:
            self._chunks.append(bytes(chunk))

    def finish(self) -> None:
        if self._done is not None:
            self._done.set()

    def cancel(self) -> None:
        self._cancelled = True
        self._chunks = []
        if self._done is not None:
            self._done.set()

    async def stop(self) -> CapturedAudio:
        if self._done is None:
            raise AudioCaptureError("recorder was never started")
        try:
            await self._done.wait()
        finally:
            self._active = False
        if self._cancelled:
            raise RecordingCancelled("recording cancelled")
        data = b"".join(self._chunks)
        self._chunks = []
        if not data:
            raise AudioCaptureError("no audio captured")
        duration = (len(data) / self.bytes_per_second) if self.bytes_per_second else None
        return CapturedAudio(data=data, mime_type=self.mime_type, duration_seconds=duration)


__all__ = ["CapturedAudio", "Recorder", "BufferedRecorder"]
