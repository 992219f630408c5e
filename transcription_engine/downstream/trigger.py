"""Downstream actions for a completed transcription.

Runs after a recording reaches completed: marks the parent session
completed, requests the session summary, and notifies the owner's clients.
Each step is best-effort and independent; a failure is logged and never
reverts the recording.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from transcription_engine.downstream.notifier import Notifier
from transcription_engine.recording.models import Recording

logger = logging.getLogger(__name__)

TRANSCRIPTION_COMPLETED_EVENT = "transcription_completed"


class SessionGateway(Protocol):
    """Session operations owned by the main application."""

    async def update_session_status(self, session_id: str, status: str) -> None: ...

    async def request_session_summary(
        self, session_id: str, recording_id: str | None = None
    ) -> None: ...


def notification_payload(
    recording: Recording, include_transcript: bool = False
) -> dict[str, Any]:
    """Build the completion event payload.

    Metadata is stripped of transcript text: speaker label text and word
    timestamps are replaced by counts.
    """
    metadata = recording.transcription_metadata
    summary: dict[str, Any] | None = None
    if metadata is not None:
        summary = {
            "provider": metadata.provider,
            "model": metadata.model,
            "language": metadata.language,
            "jobId": metadata.job_id,
            "confidence": metadata.confidence,
            "sentiment": metadata.sentiment.to_dict() if metadata.sentiment else None,
            "speakerCount": len({label.speaker for label in metadata.speaker_labels}),
            "speakerLabelCount": len(metadata.speaker_labels),
            "timestampCount": len(metadata.timestamps),
            "processingTimeMs": metadata.processing_time_ms,
        }

    payload: dict[str, Any] = {
        "recordingId": recording.id,
        "sessionId": recording.session_id,
        "status": recording.transcription_status.value,
        "durationSeconds": recording.audio.duration_seconds,
        "metadata": summary,
    }
    if include_transcript:
        payload["transcriptionText"] = recording.transcription_text
    return payload


class DownstreamTrigger:
    """Fans a completed recording out to the session and the client.

    Args:
        sessions: Session gateway (the internal API client).
        notifier: Real-time notifier.
        include_transcript: Include transcript text in the event payload.
    """

    def __init__(
        self,
        sessions: SessionGateway | None,
        notifier: Notifier,
        include_transcript: bool = False,
    ) -> None:
        self.sessions = sessions
        self.notifier = notifier
        self.include_transcript = include_transcript

    async def on_completed(self, recording: Recording) -> None:
        """Run every downstream step for a completed recording."""
        log_extra = {"recording_id": recording.id, "session_id": recording.session_id}

        if recording.session_id and self.sessions is not None:
            try:
                await self.sessions.update_session_status(recording.session_id, "completed")
            except Exception:
                logger.error(
                    "Failed to mark session %s completed",
                    recording.session_id,
                    exc_info=True,
                    extra=log_extra,
                )

            try:
                await self.sessions.request_session_summary(
                    recording.session_id, recording_id=recording.id
                )
            except Exception:
                logger.error(
                    "Failed to request summary for session %s",
                    recording.session_id,
                    exc_info=True,
                    extra=log_extra,
                )

        if recording.owner_id:
            try:
                await self.notifier.emit(
                    f"user:{recording.owner_id}",
                    TRANSCRIPTION_COMPLETED_EVENT,
                    notification_payload(recording, self.include_transcript),
                )
            except Exception:
                logger.error(
                    "Failed to emit %s for recording %s",
                    TRANSCRIPTION_COMPLETED_EVENT,
                    recording.id,
                    exc_info=True,
                    extra=log_extra,
                )

        logger.info("Downstream actions finished", extra=log_extra)
