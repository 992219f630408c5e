"""Tests for downstream actions and event notifiers."""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import httpx
import pytest

from transcription_engine.downstream import (
    DownstreamTrigger,
    HttpEventNotifier,
    NullNotifier,
)
from transcription_engine.downstream.trigger import (
    TRANSCRIPTION_COMPLETED_EVENT,
    notification_payload,
)
from transcription_engine.recording import state_machine
from transcription_engine.utils.errors import StorageError

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
GATEWAY_URL = "https://realtime.example.com"


@pytest.fixture
def completed(recording_factory, result_factory):
    recording = state_machine.begin_attempt(recording_factory(), "fake", T0).recording
    return state_machine.resolve_attempt(
        recording, result_factory("secret words", job_id="job-1"), T0
    ).recording


@pytest.fixture
def sessions():
    return AsyncMock()


@pytest.fixture
def notifier():
    return AsyncMock()


class TestNotificationPayload:
    def test_excludes_transcript_text(self, completed):
        payload = notification_payload(completed)

        assert payload["recordingId"] == "rec-1"
        assert payload["sessionId"] == "sess-1"
        assert payload["status"] == "completed"
        assert "transcriptionText" not in payload
        assert "secret words" not in json.dumps(payload)
        assert payload["metadata"]["provider"] == "fake"
        assert payload["metadata"]["jobId"] == "job-1"
        assert payload["metadata"]["speakerCount"] == 1

    def test_optionally_includes_transcript(self, completed):
        payload = notification_payload(completed, include_transcript=True)
        assert payload["transcriptionText"] == "Speaker A: secret words"

    def test_without_metadata(self, recording_factory):
        assert notification_payload(recording_factory())["metadata"] is None


class TestDownstreamTrigger:
    """Tests for DownstreamTrigger.on_completed()."""

    async def test_runs_every_step(self, completed, sessions, notifier):
        await DownstreamTrigger(sessions, notifier).on_completed(completed)

        sessions.update_session_status.assert_awaited_once_with("sess-1", "completed")
        sessions.request_session_summary.assert_awaited_once_with(
            "sess-1", recording_id="rec-1"
        )
        room, event, payload = notifier.emit.await_args.args
        assert room == "user:owner-1"
        assert event == TRANSCRIPTION_COMPLETED_EVENT
        assert payload["recordingId"] == "rec-1"

    async def test_steps_are_independent(self, completed, sessions, notifier):
        sessions.update_session_status.side_effect = StorageError("down")
        sessions.request_session_summary.side_effect = RuntimeError("boom")

        await DownstreamTrigger(sessions, notifier).on_completed(completed)

        sessions.request_session_summary.assert_awaited_once()
        notifier.emit.assert_awaited_once()

    async def test_notifier_failure_is_swallowed(self, completed, sessions, notifier):
        notifier.emit.side_effect = StorageError("gateway down")
        await DownstreamTrigger(sessions, notifier).on_completed(completed)
        sessions.update_session_status.assert_awaited_once()

    async def test_skips_session_steps_without_session(self, completed, sessions, notifier):
        completed.session_id = None
        await DownstreamTrigger(sessions, notifier).on_completed(completed)
        sessions.update_session_status.assert_not_awaited()
        notifier.emit.assert_awaited_once()

    async def test_without_gateway_or_owner(self, completed, notifier):
        completed.owner_id = None
        await DownstreamTrigger(None, notifier).on_completed(completed)
        notifier.emit.assert_not_awaited()


class TestNotifiers:
    async def test_null_notifier_drops_events(self):
        await NullNotifier().emit("user:1", "event", {})

    def test_http_notifier_requires_url(self, monkeypatch):
        monkeypatch.delenv("REALTIME_GATEWAY_URL", raising=False)
        with pytest.raises(StorageError, match="REALTIME_GATEWAY_URL"):
            HttpEventNotifier(gateway_url="")

    async def test_http_notifier_posts_event(self, httpx_mock):
        httpx_mock.add_response(url=f"{GATEWAY_URL}/internal/emit", method="POST")
        notifier = HttpEventNotifier(gateway_url=f"{GATEWAY_URL}/", internal_secret="s3")

        await notifier.emit("user:owner-1", "transcription_completed", {"recordingId": "r"})

        request = httpx_mock.get_request()
        assert request.headers["X-Internal-Secret"] == "s3"
        assert json.loads(request.content) == {
            "room": "user:owner-1",
            "event": "transcription_completed",
            "payload": {"recordingId": "r"},
        }

    async def test_http_notifier_error_status(self, httpx_mock):
        httpx_mock.add_response(url=f"{GATEWAY_URL}/internal/emit", status_code=502)
        notifier = HttpEventNotifier(gateway_url=GATEWAY_URL, internal_secret="s3")
        with pytest.raises(StorageError, match="HTTP 502"):
            await notifier.emit("user:1", "e", {})

    async def test_http_notifier_network_error(self, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("refused"))
        notifier = HttpEventNotifier(gateway_url=GATEWAY_URL, internal_secret="s3")
        with pytest.raises(StorageError, match="refused"):
            await notifier.emit("user:1", "e", {})
