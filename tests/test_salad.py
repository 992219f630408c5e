"""Tests for the Salad webhook engine."""

import json

import httpx
import pytest

from transcription_engine.asr.interface import (
    AudioSource,
    CompletionMode,
    PendingJob,
    StillProcessing,
    TranscribeOptions,
    TranscriptionResult,
)
from transcription_engine.asr.salad import SaladEngine
from transcription_engine.utils.errors import (
    JobNotFound,
    ProviderRejected,
    ProviderUnavailable,
)

API_URL = "https://mock-salad/jobs"

SUCCEEDED_JOB = {
    "id": "salad-1",
    "status": "succeeded",
    "output": {
        "sentence_level_timestamps": [
            {"text": "First line.", "start": 0.0, "end": 1.2, "speaker": "SPEAKER_00"},
            {"text": "Second line.", "start": 1.4, "end": 2.3, "speaker": "SPEAKER_01"},
        ],
        "duration": 2.5,
    },
}


def _engine(handler) -> SaladEngine:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SaladEngine(api_key="salad-key", api_url=API_URL, client=client)


class TestTranscribe:
    """Tests for job creation."""

    def test_webhook_engine_requires_url(self) -> None:
        engine = SaladEngine(api_key="k")
        assert engine.completion_mode == CompletionMode.WEBHOOK
        assert engine.requires_url is True

    async def test_creates_job_with_webhook(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(201, json={"id": "salad-1", "status": "pending"})

        job = await _engine(handler).transcribe(
            AudioSource(url="https://signed.example.com/a.mp3?sig=1"),
            TranscribeOptions(webhook_url="https://app.example.com/api/webhook/salad"),
        )

        assert isinstance(job, PendingJob)
        assert job.job_id == "salad-1"
        assert requests[0].headers["salad-api-key"] == "salad-key"
        body = json.loads(requests[0].content)
        assert body == {
            "audio_url": "https://signed.example.com/a.mp3?sig=1",
            "webhook_url": "https://app.example.com/api/webhook/salad",
        }

    async def test_path_only_source_rejected(self) -> None:
        with pytest.raises(ProviderRejected) as exc_info:
            await _engine(lambda r: httpx.Response(201, json={"id": "x"})).transcribe(
                AudioSource(path="/tmp/a.mp3"), TranscribeOptions()
            )
        assert exc_info.value.code == "audio_unavailable"

    async def test_server_error_recoverable(self) -> None:
        engine = _engine(lambda r: httpx.Response(500, text="oops"))
        with pytest.raises(ProviderUnavailable):
            await engine.transcribe(AudioSource(url="https://x/a.mp3"), TranscribeOptions())


class TestParseWebhook:
    """Tests for callback payload resolution."""

    def test_output_without_status_is_success(self) -> None:
        engine = SaladEngine(api_key="k")
        result = engine.parse_webhook({"id": "salad-1", "output": SUCCEEDED_JOB["output"]})

        assert isinstance(result, TranscriptionResult)
        assert result.text == "SPEAKER_00: First line.\nSPEAKER_01: Second line."
        assert result.metadata.job_id == "salad-1"
        assert result.duration_seconds == 2.5

    def test_plain_transcript_output(self) -> None:
        engine = SaladEngine(api_key="k")
        result = engine.parse_webhook({"id": "s-2", "output": {"text": "just words"}})
        assert result.text == "just words"

    def test_output_error_is_recoverable(self) -> None:
        engine = SaladEngine(api_key="k")
        with pytest.raises(ProviderUnavailable, match="gpu worker crashed") as exc_info:
            engine.parse_webhook({"id": "s-3", "output": {"error": "gpu worker crashed"}})
        assert exc_info.value.recoverable is True
        assert exc_info.value.code == "job_failed"
        assert exc_info.value.job_id == "s-3"

    def test_failed_status_is_recoverable(self) -> None:
        engine = SaladEngine(api_key="k")
        with pytest.raises(ProviderUnavailable) as exc_info:
            engine.parse_webhook({"id": "s-4", "status": "failed", "output": {}})
        assert exc_info.value.recoverable is True
        assert exc_info.value.code == "job_failed"

    def test_running_status_still_processing(self) -> None:
        engine = SaladEngine(api_key="k")
        result = engine.parse_webhook({"id": "s-5", "status": "running", "output": {}})
        assert isinstance(result, StillProcessing)

    def test_empty_output_is_empty_transcript(self) -> None:
        engine = SaladEngine(api_key="k")
        with pytest.raises(ProviderRejected) as exc_info:
            engine.parse_webhook({"id": "s-6", "output": {"text": "  "}})
        assert exc_info.value.code == "empty_transcript"


class TestPollStatus:
    """Tests for the polling fallback."""

    async def test_succeeded_job(self) -> None:
        urls: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            urls.append(str(request.url))
            return httpx.Response(200, json=SUCCEEDED_JOB)

        result = await _engine(handler).poll_status("salad-1")

        assert urls == [f"{API_URL}/salad-1"]
        assert isinstance(result, TranscriptionResult)

    async def test_pending_job(self) -> None:
        engine = _engine(lambda r: httpx.Response(200, json={"id": "s", "status": "pending"}))
        result = await engine.poll_status("s")
        assert isinstance(result, StillProcessing)
        assert result.remote_status == "pending"

    async def test_unknown_job(self) -> None:
        engine = _engine(lambda r: httpx.Response(404, json={}))
        with pytest.raises(JobNotFound):
            await engine.poll_status("missing")

    async def test_network_error_keeps_job_open(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await _engine(handler).poll_status("s")

        assert isinstance(result, StillProcessing)
        assert result.remote_status == "unreachable"

    async def test_throttled_keeps_job_open(self) -> None:
        engine = _engine(lambda r: httpx.Response(429, json={}))
        result = await engine.poll_status("s")
        assert isinstance(result, StillProcessing)
        assert result.remote_status == "throttled"

    async def test_failed_job_is_recoverable(self) -> None:
        engine = _engine(
            lambda r: httpx.Response(
                200, json={"id": "s", "status": "failed", "output": {"error": "worker lost"}}
            )
        )
        with pytest.raises(ProviderUnavailable) as exc_info:
            await engine.poll_status("s")
        assert exc_info.value.recoverable is True
