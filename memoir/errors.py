"""Error taxonomy shared by the session orchestrator and the cascade deletion."""
from __future__ import annotations

from typing import Sequence


class MemoirError(Exception):
    pass


class AuthenticationError(MemoirError):
    """No credential, or the credential expired. Surface as a re-login prompt."""


class AuthorizationError(MemoirError):
    """Caller is not the owner of the resource."""


class NotFoundError(MemoirError):
    """Root entity is missing."""


class NetworkError(MemoirError):
    """Transient failure talking to storage or the backend; retryable by the user."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = True


class PartialDeletionError(MemoirError):
    """Raised only on request (DeleteReport.raise_for_errors); carries the labeled step errors."""

    def __init__(self, errors: Sequence[str]):
        super().__init__("; ".join(errors))
        self.errors = list(errors)


class TtsUnavailableError(MemoirError):
    """Speech for a prompt did not show up within the poll budget."""

    def __init__(self, recording_id: int, attempts: int):
        super().__init__(f"audio not ready for recording {recording_id} after {attempts} attempts")
        self.recording_id = recording_id
        self.attempts = attempts


class AudioCaptureError(MemoirError):
    pass


class RecordingCancelled(MemoirError):
    pass


class TurnInProgressError(MemoirError):
    pass


class SessionStateError(MemoirError):
    pass


class BlobStoreError(MemoirError):
    pass


class StoryImageOwnershipError(ValueError):
    pass


__all__ = [
    "MemoirError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "NetworkError",
    "PartialDeletionError",
    "TtsUnavailableError",
    "AudioCaptureError",
    "RecordingCancelled",
    "TurnInProgressError",
    "SessionStateError",
    "BlobStoreError",
    "StoryImageOwnershipError",
]
