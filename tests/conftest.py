"""Shared fixtures: a scriptable provider engine and recording builders."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from transcription_engine.asr.interface import (
    ASREngine,
    AudioSource,
    CompletionMode,
    PendingJob,
    StillProcessing,
    TranscribeOptions,
    TranscriptionResult,
    Utterance,
)
from transcription_engine.asr.normalize import build_result
from transcription_engine.asr.registry import ProviderRegistry
from transcription_engine.config import EngineSettings
from transcription_engine.recording import state_machine
from transcription_engine.recording.models import AudioDescriptor, Recording, RetryPolicy
from transcription_engine.storage.recording_store import InMemoryRecordingStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class ScriptedEngine(ASREngine):
    """Engine whose responses are queued by the test.

    Each queued item is returned, or raised when it is an exception.
    """

    def __init__(
        self,
        name: str = "fake",
        completion_mode: CompletionMode = CompletionMode.SYNCHRONOUS,
        requires_url: bool = False,
        accepts_url: bool = True,
    ) -> None:
        self.name = name
        self.completion_mode = completion_mode
        self.requires_url = requires_url
        self.accepts_url = accepts_url
        self.transcribe_queue: list[Any] = []
        self.poll_queue: list[Any] = []
        self.transcribe_calls: list[tuple[AudioSource, TranscribeOptions]] = []
        self.poll_calls: list[str] = []
        self.closed = False

    @staticmethod
    def _next(queue: list[Any]) -> Any:
        item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def transcribe(
        self, audio: AudioSource, options: TranscribeOptions
    ) -> TranscriptionResult | PendingJob:
        self.transcribe_calls.append((audio, options))
        return self._next(self.transcribe_queue)

    async def poll_status(self, job_id: str) -> TranscriptionResult | StillProcessing:
        self.poll_calls.append(job_id)
        return self._next(self.poll_queue)

    def parse_webhook(self, payload: dict[str, Any]) -> TranscriptionResult | StillProcessing:
        output = payload["output"]
        if output.get("pending"):
            return StillProcessing(job_id=payload["id"], provider=self.name, remote_status="running")
        return make_result(output["text"], provider=self.name, job_id=payload["id"])

    async def aclose(self) -> None:
        self.closed = True


def make_result(
    text: str = "hello there", provider: str = "fake", job_id: str | None = None
) -> TranscriptionResult:
    return build_result(
        provider,
        [Utterance(text=text, start=0.0, end=1.5, speaker="Speaker A", confidence=0.9)],
        model="test-model",
        language="en",
        job_id=job_id,
    )


def make_recording(
    recording_id: str = "rec-1",
    audio: AudioDescriptor | None = None,
    policy: RetryPolicy | None = None,
    now: datetime = T0,
    **fields: Any,
) -> Recording:
    recording = state_machine.new_recording(
        recording_id,
        fields.pop("session_id", "sess-1"),
        fields.pop("owner_id", "owner-1"),
        audio or AudioDescriptor(url="https://cdn.example.com/a.mp3", format="mp3"),
        policy=policy,
        now=now,
    )
    for key, value in fields.items():
        setattr(recording, key, value)
    return recording


@pytest.fixture
def engine_factory():
    """Build ScriptedEngine instances."""
    return ScriptedEngine


@pytest.fixture
def result_factory():
    return make_result


@pytest.fixture
def recording_factory():
    return make_recording


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(
        app_url="https://app.example.com",
        default_provider="fake",
        max_retries=3,
        retry_base_delay_seconds=60.0,
        retry_max_delay_seconds=3600.0,
    )


@pytest.fixture
def store() -> InMemoryRecordingStore:
    return InMemoryRecordingStore()


@pytest.fixture
def fake_engine() -> ScriptedEngine:
    return ScriptedEngine()


@pytest.fixture
def registry(fake_engine) -> ProviderRegistry:
    return ProviderRegistry({fake_engine.name: fake_engine})
