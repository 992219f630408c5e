"""Abstract ASR engine interface.

Defines the ASREngine ABC and the provider-neutral result models. Concrete
providers subclass ASREngine and map their payloads into Utterances, which
asr.normalize turns into a TranscriptionResult.

Completion models:
    synchronous: transcribe() returns a TranscriptionResult.
    polling: transcribe() returns a PendingJob; poll_status() resolves it.
    webhook: transcribe() returns a PendingJob; the provider calls back and
        parse_webhook() resolves it (poll_status() is the fallback).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from transcription_engine.utils.clock import from_iso, to_iso, utc_now
from transcription_engine.utils.errors import ProviderRejected


class CompletionMode(str, Enum):
    SYNCHRONOUS = "synchronous"
    POLLING = "polling"
    WEBHOOK = "webhook"


@dataclass
class Utterance:
    """A span of speech as reported by a provider, before normalization."""

    text: str
    start: float = 0.0
    end: float = 0.0
    speaker: str | None = None
    confidence: float | None = None


@dataclass
class SpeakerLabel:
    """A speaker-attributed span with start/end offsets in seconds."""

    speaker: str
    start_time: float
    end_time: float
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "speaker": self.speaker,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SpeakerLabel:
        return cls(
            speaker=str(data.get("speaker", "")),
            start_time=float(data.get("startTime", 0.0) or 0.0),
            end_time=float(data.get("endTime", 0.0) or 0.0),
            text=data.get("text", "") or "",
        )


@dataclass
class WordTimestamp:
    """A word or sentence with start/end offsets in seconds."""

    text: str
    start: float
    end: float

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WordTimestamp:
        return cls(
            text=data.get("text", "") or "",
            start=float(data.get("start", 0.0) or 0.0),
            end=float(data.get("end", 0.0) or 0.0),
        )


@dataclass
class Sentiment:
    """Coarse sentiment: score in [-1, 1] and a positive/neutral/negative label."""

    score: float
    label: str

    def to_dict(self) -> dict[str, Any]:
        return {"score": self.score, "label": self.label}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Sentiment | None:
        if not data:
            return None
        return cls(score=float(data.get("score", 0.0)), label=data.get("label", "neutral"))


@dataclass
class TranscriptionMetadata:
    """Structured metadata stored alongside a transcript."""

    provider: str
    model: str | None = None
    language: str | None = None
    job_id: str | None = None
    confidence: float | None = None
    sentiment: Sentiment | None = None
    speaker_labels: list[SpeakerLabel] = field(default_factory=list)
    timestamps: list[WordTimestamp] = field(default_factory=list)
    processed_at: datetime | None = None
    processing_time_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "language": self.language,
            "jobId": self.job_id,
            "confidence": self.confidence,
            "sentiment": self.sentiment.to_dict() if self.sentiment else None,
            "speakerLabels": [label.to_dict() for label in self.speaker_labels],
            "timestamps": [stamp.to_dict() for stamp in self.timestamps],
            "processedAt": to_iso(self.processed_at),
            "processingTimeMs": self.processing_time_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> TranscriptionMetadata | None:
        if not data:
            return None
        return cls(
            provider=data.get("provider", ""),
            model=data.get("model"),
            language=data.get("language"),
            job_id=data.get("jobId"),
            confidence=data.get("confidence"),
            sentiment=Sentiment.from_dict(data.get("sentiment")),
            speaker_labels=[
                SpeakerLabel.from_dict(item) for item in data.get("speakerLabels") or []
            ],
            timestamps=[
                WordTimestamp.from_dict(item) for item in data.get("timestamps") or []
            ],
            processed_at=from_iso(data.get("processedAt")),
            processing_time_ms=data.get("processingTimeMs"),
        )


@dataclass
class TranscriptionResult:
    """Normalized terminal result from any provider."""

    text: str
    metadata: TranscriptionMetadata
    status: str = "completed"
    duration_seconds: float | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "status": self.status,
            "durationSeconds": self.duration_seconds,
            "metadata": self.metadata.to_dict(),
        }


@dataclass
class PendingJob:
    """A remote job accepted by a job-based provider."""

    job_id: str
    provider: str
    submitted_at: datetime = field(default_factory=utc_now)


@dataclass
class StillProcessing:
    """The remote job exists but has not reached a terminal state."""

    job_id: str
    provider: str
    remote_status: str


@dataclass
class AudioSource:
    """Where a provider can read the audio from.

    At least one of path or url must be set. Providers that need a reachable
    URL (requires_url) reject sources that only carry a local path.
    """

    path: str | None = None
    url: str | None = None
    filename: str | None = None
    format: str | None = None
    duration_seconds: float | None = None

    def require_path(self, provider: str) -> str:
        if not self.path:
            raise ProviderRejected(
                "A readable local audio file is required", provider=provider,
                code="audio_unavailable",
            )
        return self.path

    def require_url(self, provider: str) -> str:
        if not self.url:
            raise ProviderRejected(
                "A provider-reachable audio URL is required", provider=provider,
                code="audio_unavailable",
            )
        return self.url


@dataclass
class TranscribeOptions:
    """Per-call options for ASREngine.transcribe()."""

    language: str = "en"
    speaker_count: int | None = None
    recording_id: str | None = None
    webhook_url: str | None = None


class ASREngine(ABC):
    """Abstract base class for speech-to-text provider adapters.

    Subclasses set name and completion_mode and implement transcribe().
    Job-based providers also implement poll_status(); webhook providers
    implement parse_webhook(). requires_url means the provider must be given
    a reachable URL; accepts_url=False means it only reads local files.
    """

    name: str = ""
    completion_mode: CompletionMode = CompletionMode.SYNCHRONOUS
    requires_url: bool = False
    accepts_url: bool = True

    @abstractmethod
    async def transcribe(
        self, audio: AudioSource, options: TranscribeOptions
    ) -> TranscriptionResult | PendingJob:
        """Submit audio for transcription.

        Args:
            audio: Local path and/or reachable URL of the audio.
            options: Language hint, speaker count and correlation data.

        Returns:
            TranscriptionResult for synchronous providers, PendingJob for
            job-based providers.

        Raises:
            ProviderError: On network, auth, input or provider failures.
        """

    async def poll_status(self, job_id: str) -> TranscriptionResult | StillProcessing:
        """Check a remote job and return its result once terminal.

        Raises:
            ProviderError: If the job failed remotely or cannot be found.
        """
        raise ProviderRejected(
            f"Provider '{self.name}' does not support job polling",
            provider=self.name,
            job_id=job_id,
            code="polling_unsupported",
        )

    def parse_webhook(self, payload: dict[str, Any]) -> TranscriptionResult | StillProcessing:
        """Turn a provider callback payload into a result.

        Raises:
            ProviderError: If the callback reports a failure.
        """
        raise ProviderRejected(
            f"Provider '{self.name}' does not deliver webhooks",
            provider=self.name,
            code="webhook_unsupported",
        )

    async def aclose(self) -> None:
        """Release network resources held by the engine."""
