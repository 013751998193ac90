"""HTTP client for the remote inference backend.

The backend does the heavy lifting: transcription, follow-up question
generation, speech synthesis (written to the turn row later), chapter
generation and story assembly. Calls carry the caller's bearer token.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from memoir.errors import AuthenticationError, NetworkError
from memoir.schemas import TurnResult
from memoir.settings.config import settings

logger = logging.getLogger(__name__)


class BackendClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.BACKEND_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.BACKEND_TIMEOUT
        self.max_retries = max_retries if max_retries is not None else settings.BACKEND_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else settings.BACKEND_RETRY_DELAY
        self._transport = transport

    async def _post(self, path: str, token: str | None, payload: dict | None = None) -> Any:
        if not token:
            raise AuthenticationError("missing access token")
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {token}"}
        attempt = 0
        while True:
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    r = await client.post(url, json=payload, headers=headers)
            except httpx.HTTPError as e:
                if attempt < self.max_retries:
                    attempt += 1
                    logger.warning("POST %s failed (%s); retry %d/%d", path, e, attempt, self.max_retries)
                    await asyncio.sleep(self.retry_delay)
                    continue
                raise NetworkError(f"request to {path} failed: {e}") from e

            if r.status_code >= 500 and attempt < self.max_retries:
                attempt += 1
                logger.warning("POST %s -> %s; retry %d/%d", path, r.status_code, attempt, self.max_retries)
                await asyncio.sleep(self.retry_delay)
                continue
            break

        if r.status_code == 401:
            raise AuthenticationError("backend rejected the access token")
        if r.status_code >= 400:
            raise NetworkError(f"{path} failed: {r.status_code} {r.reason_phrase}", status_code=r.status_code)
        try:
            return r.json()
        except ValueError as e:
            raise NetworkError(f"{path} returned invalid JSON") from e

    # ---- endpoints ---------------------------------------------------------
    async def upload_and_process(
        self,
        token: str | None,
        *,
        session_id: int,
        recording_id: int,
        storage_path: str,
        duration_seconds: float | None,
        mime_type: str,
        language: str,
        prompt_text: str | None,
        synthesize_tts: bool = True,
    ) -> TurnResult:
        data = await self._post(
            "/api/turns/upload",
            token,
            {
                "sessionId": session_id,
                "recordingId": recording_id,
                "storagePath": storage_path,
                "durationSeconds": duration_seconds,
                "mimeType": mime_type,
                "language": language,
                "prompt_text": prompt_text,
                "synthesize_tts": synthesize_tts,
            },
        )
        return TurnResult.model_validate(data or {})

    async def generate_chapters(self, token: str | None, session_id: int) -> Any:
        return await self._post(f"/api/ai/chapters/generate/{session_id}", token)

    async def assemble_story(self, token: str | None, session_id: int) -> Any:
        return await self._post(f"/api/ai/story/assemble/{session_id}", token)


__all__ = ["BackendClient"]
