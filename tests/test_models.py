"""Tests for recording data models."""

from datetime import UTC, datetime

from transcription_engine.asr.interface import TranscriptionMetadata
from transcription_engine.recording.models import (
    AttemptOutcome,
    AttemptRecord,
    AudioDescriptor,
    ErrorSnapshot,
    Recording,
    RecordingType,
    RetryPolicy,
    TranscriptionStatus,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _full_recording() -> Recording:
    return Recording(
        id="rec-1",
        session_id="sess-1",
        owner_id="owner-1",
        recording_type=RecordingType.DICTATION,
        audio=AudioDescriptor(
            path="/tmp/a.m4a",
            object_key="owner-1/rec-1/a.m4a",
            url="https://signed",
            duration_seconds=61.5,
            size_bytes=1024,
            format="m4a",
            language="fr",
        ),
        transcription_status=TranscriptionStatus.RETRYING,
        transcription_metadata=TranscriptionMetadata(provider="salad", job_id="j-1"),
        attempts=[
            AttemptRecord(
                attempt_number=1,
                provider_name="salad",
                outcome=AttemptOutcome.FAILED,
                started_at=T0,
                job_id="j-1",
                error="boom",
                completed_at=T0,
                duration_ms=0,
            )
        ],
        retry_policy=RetryPolicy(max_retries=3, current_retry=1, next_retry_at=T0),
        error=ErrorSnapshot(
            message="boom",
            code="http_503",
            timestamp=T0,
            attempt_number=1,
            provider_name="salad",
            is_recoverable=True,
        ),
        version=4,
        created_at=T0,
        updated_at=T0,
    )


class TestRecordingSerialization:
    """Tests for camelCase wire serialization."""

    def test_round_trip(self) -> None:
        recording = _full_recording()
        assert Recording.from_dict(recording.to_dict()) == recording

    def test_wire_keys_are_camel_case(self) -> None:
        data = _full_recording().to_dict()
        assert data["transcriptionStatus"] == "retrying"
        assert data["retryPolicy"]["nextRetryAt"] == "2026-03-01T12:00:00Z"
        assert data["attempts"][0]["providerName"] == "salad"
        assert data["error"]["isRecoverable"] is True
        assert data["recordingType"] == "dictation"

    def test_public_dict_hides_storage_and_version(self) -> None:
        data = _full_recording().to_public_dict()
        assert "version" not in data
        assert data["audio"] == {
            "durationSeconds": 61.5,
            "sizeBytes": 1024,
            "format": "m4a",
            "language": "fr",
        }

    def test_from_minimal_dict_defaults(self) -> None:
        recording = Recording.from_dict({"id": 7})
        assert recording.id == "7"
        assert recording.transcription_status == TranscriptionStatus.PENDING
        assert recording.retry_policy == RetryPolicy()
        assert recording.attempts == []
        assert recording.error is None


class TestRecordingProperties:
    def test_terminal_statuses(self) -> None:
        assert TranscriptionStatus.COMPLETED.is_terminal
        assert TranscriptionStatus.FAILED.is_terminal
        assert not TranscriptionStatus.RETRYING.is_terminal
        assert not TranscriptionStatus.PROCESSING.is_terminal

    def test_job_and_provider_from_metadata(self) -> None:
        recording = _full_recording()
        assert recording.job_id == "j-1"
        assert recording.provider_name == "salad"
        assert recording.open_attempt is None

    def test_job_from_open_attempt(self) -> None:
        recording = Recording(
            id="r",
            attempts=[AttemptRecord(attempt_number=1, provider_name="assemblyai", job_id="a-1")],
        )
        assert recording.open_attempt is recording.attempts[0]
        assert recording.job_id == "a-1"
        assert recording.provider_name == "assemblyai"

    def test_empty_recording(self) -> None:
        recording = Recording(id="r")
        assert recording.last_attempt is None
        assert recording.job_id is None
        assert recording.provider_name is None
