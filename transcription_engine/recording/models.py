"""Recording data model.

Plain dataclasses, serialized with camelCase keys to match the wire format of
the persistence service. The state machine is the only code that produces
new Recording values; nothing here enforces transitions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from transcription_engine.asr.interface import TranscriptionMetadata
from transcription_engine.utils.clock import from_iso, to_iso, utc_now

SUPPORTED_FORMATS = ("mp3", "wav", "webm", "m4a", "ogg", "mpeg", "mp4", "flac")


class TranscriptionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    RETRYING = "retrying"

    @property
    def is_terminal(self) -> bool:
        return self in (TranscriptionStatus.COMPLETED, TranscriptionStatus.FAILED)


class AttemptOutcome(str, Enum):
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    FAILED = "failed"


class RecordingType(str, Enum):
    SESSION_RECORDING = "session_recording"
    DICTATION = "dictation"


@dataclass
class ErrorSnapshot:
    """The last failure recorded against a recording."""

    message: str
    code: str
    timestamp: datetime
    attempt_number: int | None = None
    provider_name: str | None = None
    is_recoverable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "timestamp": to_iso(self.timestamp),
            "attemptNumber": self.attempt_number,
            "providerName": self.provider_name,
            "isRecoverable": self.is_recoverable,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ErrorSnapshot | None:
        if not data:
            return None
        return cls(
            message=data.get("message", ""),
            code=data.get("code", ""),
            timestamp=from_iso(data.get("timestamp")) or utc_now(),
            attempt_number=data.get("attemptNumber"),
            provider_name=data.get("providerName"),
            is_recoverable=bool(data.get("isRecoverable", False)),
        )


@dataclass
class AttemptRecord:
    """One provider invocation in a recording's attempt history."""

    attempt_number: int
    provider_name: str
    outcome: AttemptOutcome = AttemptOutcome.ATTEMPTING
    started_at: datetime = field(default_factory=utc_now)
    job_id: str | None = None
    error: str | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "attemptNumber": self.attempt_number,
            "providerName": self.provider_name,
            "outcome": self.outcome.value,
            "jobId": self.job_id,
            "error": self.error,
            "startedAt": to_iso(self.started_at),
            "completedAt": to_iso(self.completed_at),
            "durationMs": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AttemptRecord:
        return cls(
            attempt_number=int(data.get("attemptNumber", 0)),
            provider_name=data.get("providerName", ""),
            outcome=AttemptOutcome(data.get("outcome", AttemptOutcome.ATTEMPTING.value)),
            started_at=from_iso(data.get("startedAt")) or utc_now(),
            job_id=data.get("jobId"),
            error=data.get("error"),
            completed_at=from_iso(data.get("completedAt")),
            duration_ms=data.get("durationMs"),
        )


@dataclass
class RetryPolicy:
    """Per-recording retry budget and schedule."""

    max_retries: int = 3
    current_retry: int = 0
    next_retry_at: datetime | None = None
    backoff_multiplier: float = 2.0
    preferred_provider: str | None = None
    fallback_enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "maxRetries": self.max_retries,
            "currentRetry": self.current_retry,
            "nextRetryAt": to_iso(self.next_retry_at),
            "backoffMultiplier": self.backoff_multiplier,
            "preferredProvider": self.preferred_provider,
            "fallbackEnabled": self.fallback_enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RetryPolicy:
        data = data or {}
        return cls(
            max_retries=int(data.get("maxRetries", 3)),
            current_retry=int(data.get("currentRetry", 0)),
            next_retry_at=from_iso(data.get("nextRetryAt")),
            backoff_multiplier=float(data.get("backoffMultiplier", 2.0)),
            preferred_provider=data.get("preferredProvider"),
            fallback_enabled=bool(data.get("fallbackEnabled", True)),
        )


@dataclass
class AudioDescriptor:
    """Where the recording's audio lives and what it is."""

    path: str | None = None
    object_key: str | None = None
    url: str | None = None
    duration_seconds: float | None = None
    size_bytes: int | None = None
    format: str | None = None
    language: str = "en"

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "objectKey": self.object_key,
            "url": self.url,
            "durationSeconds": self.duration_seconds,
            "sizeBytes": self.size_bytes,
            "format": self.format,
            "language": self.language,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AudioDescriptor:
        data = data or {}
        return cls(
            path=data.get("path"),
            object_key=data.get("objectKey"),
            url=data.get("url"),
            duration_seconds=data.get("durationSeconds"),
            size_bytes=data.get("sizeBytes"),
            format=data.get("format"),
            language=data.get("language") or "en",
        )


@dataclass
class Recording:
    """A unit of uploaded audio tracked through transcription."""

    id: str
    session_id: str | None = None
    owner_id: str | None = None
    recording_type: RecordingType = RecordingType.SESSION_RECORDING
    audio: AudioDescriptor = field(default_factory=AudioDescriptor)
    transcription_status: TranscriptionStatus = TranscriptionStatus.PENDING
    transcription_text: str | None = None
    transcription_metadata: TranscriptionMetadata | None = None
    attempts: list[AttemptRecord] = field(default_factory=list)
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    error: ErrorSnapshot | None = None
    version: int = 0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def status(self) -> TranscriptionStatus:
        return self.transcription_status

    @property
    def last_attempt(self) -> AttemptRecord | None:
        return self.attempts[-1] if self.attempts else None

    @property
    def open_attempt(self) -> AttemptRecord | None:
        """The in-flight attempt, if the last one has not resolved yet."""
        last = self.last_attempt
        if last is not None and last.outcome == AttemptOutcome.ATTEMPTING:
            return last
        return None

    @property
    def job_id(self) -> str | None:
        if self.transcription_metadata and self.transcription_metadata.job_id:
            return self.transcription_metadata.job_id
        open_attempt = self.open_attempt
        return open_attempt.job_id if open_attempt else None

    @property
    def provider_name(self) -> str | None:
        if self.transcription_metadata and self.transcription_metadata.provider:
            return self.transcription_metadata.provider
        last = self.last_attempt
        return last.provider_name if last else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "ownerId": self.owner_id,
            "recordingType": self.recording_type.value,
            "audio": self.audio.to_dict(),
            "transcriptionStatus": self.transcription_status.value,
            "transcriptionText": self.transcription_text,
            "transcriptionMetadata": (
                self.transcription_metadata.to_dict()
                if self.transcription_metadata
                else None
            ),
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "retryPolicy": self.retry_policy.to_dict(),
            "error": self.error.to_dict() if self.error else None,
            "version": self.version,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }

    def to_public_dict(self) -> dict[str, Any]:
        """Serialized form returned to HTTP callers.

        Drops storage locations and the concurrency token.
        """
        data = self.to_dict()
        data.pop("version")
        data["audio"] = {
            key: value
            for key, value in data["audio"].items()
            if key not in ("path", "objectKey", "url")
        }
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Recording:
        return cls(
            id=str(data["id"]),
            session_id=data.get("sessionId"),
            owner_id=data.get("ownerId"),
            recording_type=RecordingType(
                data.get("recordingType") or RecordingType.SESSION_RECORDING.value
            ),
            audio=AudioDescriptor.from_dict(data.get("audio")),
            transcription_status=TranscriptionStatus(
                data.get("transcriptionStatus") or TranscriptionStatus.PENDING.value
            ),
            transcription_text=data.get("transcriptionText"),
            transcription_metadata=TranscriptionMetadata.from_dict(
                data.get("transcriptionMetadata")
            ),
            attempts=[AttemptRecord.from_dict(item) for item in data.get("attempts") or []],
            retry_policy=RetryPolicy.from_dict(data.get("retryPolicy")),
            error=ErrorSnapshot.from_dict(data.get("error")),
            version=int(data.get("version", 0)),
            created_at=from_iso(data.get("createdAt")) or utc_now(),
            updated_at=from_iso(data.get("updatedAt")) or utc_now(),
        )
