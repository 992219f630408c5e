"""Main-application internal API client.

The main application owns the database and the field-encryption layer; the
engine reaches recordings and sessions through its internal endpoints,
authenticated with a shared secret. Implements RecordingStore for recordings
and the session gateway used by the downstream trigger.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from datetime import datetime
from typing import Any

import httpx

from transcription_engine.recording.models import Recording, TranscriptionStatus
from transcription_engine.recording.state_machine import Transition, is_retry_eligible
from transcription_engine.storage.recording_store import RecordingStore
from transcription_engine.utils.clock import to_iso
from transcription_engine.utils.errors import StorageError
from transcription_engine.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

APPLY_MAX_ATTEMPTS = 3


def _holds_transition(stored: Recording, transition: Transition) -> bool:
    """True when the stored recording is the value this transition wrote."""
    written = transition.recording
    return (
        stored.version == written.version
        and stored.transcription_status == written.transcription_status
        and stored.updated_at == written.updated_at
        and len(stored.attempts) == len(written.attempts)
    )


class InternalApiClient(RecordingStore):
    """Client for recording and session operations on the internal API.

    Reads configuration from environment variables:
        INTERNAL_API_URL, INTERNAL_API_SECRET
    """

    def __init__(
        self,
        base_url: str | None = None,
        internal_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or os.environ.get("INTERNAL_API_URL", "")).rstrip("/")
        self.internal_secret = internal_secret or os.environ.get(
            "INTERNAL_API_SECRET", ""
        )

        if not self.base_url:
            raise StorageError("INTERNAL_API_URL is required", operation="init")
        if not self.internal_secret:
            raise StorageError("INTERNAL_API_SECRET is required", operation="init")

        self._client = client or httpx.AsyncClient(timeout=30.0)

    def _headers(self) -> dict[str, str]:
        """Build authentication headers for internal endpoints."""
        return {
            "X-Internal-Secret": self.internal_secret,
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        """Close the shared HTTP client and release connection pool."""
        await self._client.aclose()

    @retry_with_backoff(
        max_retries=2,
        base_delay=0.5,
        retryable_exceptions=(httpx.RequestError,),
    )
    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self._client.request(
            method, f"{self.base_url}{path}", headers=self._headers(), **kwargs
        )

    async def _call(
        self,
        method: str,
        path: str,
        operation: str,
        recording_id: str | None = None,
        allowed: tuple[int, ...] = (),
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, mapping transport and HTTP failures to StorageError.

        Status codes in allowed are returned to the caller unraised.
        """
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.RequestError as exc:
            raise StorageError(
                f"Internal API {operation} failed: {exc}",
                recording_id=recording_id,
                operation=operation,
            ) from exc
        return self._check(response, operation, recording_id, allowed)

    @staticmethod
    def _check(
        response: httpx.Response,
        operation: str,
        recording_id: str | None,
        allowed: tuple[int, ...] = (),
    ) -> httpx.Response:
        if response.status_code in allowed:
            return response
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StorageError(
                f"Internal API {operation} failed: HTTP {exc.response.status_code}",
                recording_id=recording_id,
                operation=operation,
            ) from exc
        return response

    @staticmethod
    def _recording_from(body: dict[str, Any]) -> Recording:
        return Recording.from_dict(body.get("recording", body))

    def _recordings_from(self, body: Any) -> list[Recording]:
        items = body.get("recordings", []) if isinstance(body, dict) else body
        return [Recording.from_dict(item) for item in items or []]

    async def get(self, recording_id: str) -> Recording | None:
        response = await self._call(
            "GET",
            f"/internal/recordings/{recording_id}",
            "get_recording",
            recording_id=recording_id,
            allowed=(404,),
        )
        if response.status_code == 404:
            return None
        return self._recording_from(response.json())

    async def create(self, recording: Recording) -> Recording:
        response = await self._call(
            "POST",
            "/internal/recordings",
            "create_recording",
            recording_id=recording.id,
            json={"recording": recording.to_dict()},
        )
        return self._recording_from(response.json())

    async def apply(self, transition: Transition) -> Recording | None:
        """Write a transition with a conditional PUT.

        The PUT is not blindly resent. After a transport failure the stored
        recording is read back: if it already holds this transition the write
        landed, if it still matches the expectations the PUT is sent again,
        and anything else means another writer won.
        """
        recording = transition.recording
        payload = {
            "recording": recording.to_dict(),
            "expectedStatus": transition.expected_status.value,
            "expectedVersion": transition.expected_version,
        }
        path = f"/internal/recordings/{recording.id}"
        last_error: httpx.RequestError | None = None

        for attempt in range(APPLY_MAX_ATTEMPTS):
            try:
                response = await self._client.request(
                    "PUT", f"{self.base_url}{path}", headers=self._headers(), json=payload
                )
            except httpx.RequestError as exc:
                last_error = exc
                logger.warning(
                    "Conditional write for recording %s interrupted (attempt %d/%d): %s",
                    recording.id,
                    attempt + 1,
                    APPLY_MAX_ATTEMPTS,
                    exc,
                    extra={"recording_id": recording.id},
                )
                stored = await self.get(recording.id)
                if stored is None:
                    break
                if _holds_transition(stored, transition):
                    logger.info(
                        "Interrupted write for recording %s had landed",
                        recording.id,
                        extra={"recording_id": recording.id},
                    )
                    return stored
                if (
                    stored.transcription_status != transition.expected_status
                    or stored.version != transition.expected_version
                ):
                    self._log_lost_write(transition)
                    return None
                continue

            self._check(response, "apply_transition", recording.id, allowed=(409,))
            if response.status_code == 409:
                self._log_lost_write(transition)
                return None
            return self._recording_from(response.json())

        raise StorageError(
            f"Internal API apply_transition failed: {last_error}",
            recording_id=recording.id,
            operation="apply_transition",
        ) from last_error

    @staticmethod
    def _log_lost_write(transition: Transition) -> None:
        recording_id = transition.recording.id
        logger.info(
            "Conditional write lost for recording %s",
            recording_id,
            extra={
                "recording_id": recording_id,
                "status": transition.expected_status.value,
            },
        )

    async def find_by_job(self, provider: str, job_id: str) -> Recording | None:
        response = await self._call(
            "GET",
            "/internal/recordings",
            "find_by_job",
            params={"provider": provider, "jobId": job_id},
        )
        matches = self._recordings_from(response.json())
        return matches[0] if matches else None

    async def list_by_status(
        self, statuses: Iterable[TranscriptionStatus], limit: int = 50
    ) -> list[Recording]:
        response = await self._call(
            "GET",
            "/internal/recordings",
            "list_by_status",
            params={
                "status": ",".join(status.value for status in statuses),
                "limit": limit,
            },
        )
        return self._recordings_from(response.json())

    async def find_retry_eligible(self, now: datetime, limit: int = 50) -> list[Recording]:
        response = await self._call(
            "GET",
            "/internal/recordings",
            "find_retry_eligible",
            params={
                "status": "failed,retrying",
                "retryBefore": to_iso(now),
                "limit": limit,
            },
        )
        return [
            r for r in self._recordings_from(response.json()) if is_retry_eligible(r, now)
        ]

    async def update_session_status(self, session_id: str, status: str) -> None:
        """Set the parent session's status.

        Raises:
            StorageError: If the API call fails.
        """
        await self._call(
            "POST",
            f"/internal/sessions/{session_id}/status",
            "update_session_status",
            json={"status": status},
        )

    async def request_session_summary(
        self, session_id: str, recording_id: str | None = None
    ) -> None:
        """Ask the note service to generate the session summary.

        Raises:
            StorageError: If the API call fails.
        """
        await self._call(
            "POST",
            f"/internal/sessions/{session_id}/summary",
            "request_session_summary",
            recording_id=recording_id,
            json={"recordingId": recording_id},
        )
