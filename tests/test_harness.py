"""Tests for the provider test harness."""

import os
import threading
from unittest.mock import MagicMock, patch

import pytest

from transcription_engine.admin.harness import STAGING_PREFIX, ProviderTestHarness
from transcription_engine.asr.interface import CompletionMode, PendingJob, StillProcessing
from transcription_engine.asr.registry import ProviderRegistry
from transcription_engine.audio.probe import ProbeResult
from transcription_engine.utils.errors import (
    AudioProbeError,
    ProviderRejected,
    UnsupportedProviderError,
)


@pytest.fixture(autouse=True)
def probe():
    with patch("transcription_engine.admin.harness.probe_audio") as mock_probe:
        mock_probe.side_effect = lambda path: ProbeResult(
            path=path, duration_seconds=12.5, format="mp3", size_bytes=5
        )
        yield mock_probe


def _harness(engine, **kwargs) -> ProviderTestHarness:
    return ProviderTestHarness(ProviderRegistry({engine.name: engine}), **kwargs)


class TestSyncProvider:
    async def test_success_report(self, fake_engine, result_factory):
        fake_engine.transcribe_queue.append(result_factory("test clip"))

        report = await _harness(fake_engine).run(b"audio", "clip.mp3", "fake", language="de")

        assert report.success is True
        data = report.to_dict()
        assert data["completionMode"] == "synchronous"
        assert data["result"]["text"] == "Speaker A: test clip"
        assert data["error"] is None
        preview = data["preview"]
        assert preview["transcriptionStatus"] == "completed"
        assert preview["audio"]["durationSeconds"] == 12.5
        assert preview["audio"]["language"] == "de"
        assert "path" not in preview["audio"]

        audio, options = fake_engine.transcribe_calls[0]
        assert audio.filename == "clip.mp3"
        assert audio.url is None
        assert options.language == "de"
        assert not os.path.exists(audio.path)

    async def test_provider_error_reported(self, fake_engine):
        fake_engine.transcribe_queue.append(
            ProviderRejected("file too large", provider="fake", code="file_too_large")
        )

        report = await _harness(fake_engine).run(b"audio", "clip.mp3", "fake")

        assert report.success is False
        assert report.error == {
            "message": "file too large",
            "code": "file_too_large",
            "recoverable": False,
        }
        assert report.preview["transcriptionStatus"] == "failed"

    async def test_probe_failure_is_not_fatal(self, fake_engine, result_factory, probe):
        probe.side_effect = AudioProbeError("ffprobe binary not found on PATH")
        fake_engine.transcribe_queue.append(result_factory())

        report = await _harness(fake_engine).run(b"audio", "../../etc/clip.webm", "fake")

        assert report.success is True
        assert report.preview["audio"]["format"] == "webm"
        assert report.preview["audio"]["durationSeconds"] is None
        audio, _ = fake_engine.transcribe_calls[0]
        assert audio.filename == "clip.webm"

    async def test_unknown_provider(self, fake_engine):
        with pytest.raises(UnsupportedProviderError):
            await _harness(fake_engine).run(b"audio", "clip.mp3", "nope")


class TestJobProvider:
    async def test_polls_until_done(self, engine_factory, result_factory):
        engine = engine_factory(completion_mode=CompletionMode.POLLING)
        engine.transcribe_queue.append(PendingJob(job_id="job-7", provider="fake"))
        engine.poll_queue.extend(
            [StillProcessing("job-7", "fake", "queued"), result_factory("eventually")]
        )

        report = await _harness(engine, poll_interval=0).run(b"audio", "clip.mp3", "fake")

        assert report.success is True
        assert engine.poll_calls == ["job-7", "job-7"]
        assert report.preview["transcriptionMetadata"]["jobId"] == "job-7"

    async def test_poll_timeout(self, engine_factory):
        engine = engine_factory(completion_mode=CompletionMode.POLLING)
        engine.transcribe_queue.append(PendingJob(job_id="job-7", provider="fake"))
        engine.poll_queue.append(StillProcessing("job-7", "fake", "running"))

        report = await _harness(engine, poll_interval=0, poll_timeout=0).run(
            b"audio", "clip.mp3", "fake"
        )

        assert report.error["code"] == "poll_timeout"
        assert report.preview["transcriptionStatus"] == "failed"


class TestUrlProvider:
    async def test_requires_object_storage(self, engine_factory):
        engine = engine_factory(requires_url=True)

        report = await _harness(engine).run(b"audio", "clip.mp3", "fake")

        assert report.error["code"] == "audio_unavailable"
        assert engine.transcribe_calls == []

    async def test_stages_and_cleans_up(self, engine_factory, result_factory):
        engine = engine_factory(requires_url=True)
        engine.transcribe_queue.append(result_factory())
        object_store = MagicMock()
        object_store.generate_signed_url.return_value = "https://signed.example.com/x"

        report = await _harness(engine, object_store=object_store).run(
            b"audio-bytes", "clip.mp3", "fake"
        )

        assert report.success is True
        key, data = object_store.put_object.call_args.args[:2]
        assert key.startswith(f"{STAGING_PREFIX}/")
        assert key.endswith("/clip.mp3")
        assert data == b"audio-bytes"
        assert object_store.put_object.call_args.args[2] == "audio/mpeg"
        audio, _ = engine.transcribe_calls[0]
        assert audio.url == "https://signed.example.com/x"
        object_store.delete_object.assert_called_once_with(key)

    async def test_staging_runs_off_event_loop(self, engine_factory, result_factory):
        engine = engine_factory(requires_url=True)
        engine.transcribe_queue.append(result_factory())
        threads = {}
        object_store = MagicMock()
        object_store.put_object.side_effect = (
            lambda *args: threads.setdefault("put", threading.get_ident())
        )
        object_store.delete_object.side_effect = (
            lambda key: threads.setdefault("delete", threading.get_ident())
        )
        object_store.generate_signed_url.return_value = "https://signed.example.com/x"

        await _harness(engine, object_store=object_store).run(b"audio", "clip.mp3", "fake")

        assert set(threads) == {"put", "delete"}
        assert threading.get_ident() not in threads.values()
