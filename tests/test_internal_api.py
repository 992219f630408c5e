"""Tests for transcription_engine.storage.internal_api module."""

import json
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from transcription_engine.recording import state_machine
from transcription_engine.recording.models import RetryPolicy, TranscriptionStatus
from transcription_engine.storage.internal_api import InternalApiClient
from transcription_engine.utils.errors import StorageError

BASE_URL = "https://app.example.com"
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def client():
    return InternalApiClient(base_url=BASE_URL, internal_secret="test-secret")


class TestInternalApiClientInit:
    """Tests for InternalApiClient initialization."""

    def test_init_strips_trailing_slash(self):
        client = InternalApiClient(base_url=f"{BASE_URL}/", internal_secret="s")
        assert client.base_url == BASE_URL

    def test_init_from_environment(self, monkeypatch):
        monkeypatch.setenv("INTERNAL_API_URL", "https://env.example.com")
        monkeypatch.setenv("INTERNAL_API_SECRET", "env-secret")
        client = InternalApiClient()
        assert client.base_url == "https://env.example.com"
        assert client.internal_secret == "env-secret"

    def test_missing_url_raises(self, monkeypatch):
        monkeypatch.delenv("INTERNAL_API_URL", raising=False)
        with pytest.raises(StorageError, match="INTERNAL_API_URL"):
            InternalApiClient(base_url="", internal_secret="s")

    def test_missing_secret_raises(self, monkeypatch):
        monkeypatch.delenv("INTERNAL_API_SECRET", raising=False)
        with pytest.raises(StorageError, match="INTERNAL_API_SECRET"):
            InternalApiClient(base_url=BASE_URL, internal_secret="")


class TestRecordingReads:
    async def test_get_returns_recording(self, client, httpx_mock, recording_factory):
        httpx_mock.add_response(
            url=f"{BASE_URL}/internal/recordings/rec-1",
            method="GET",
            json={"recording": recording_factory().to_dict()},
        )

        recording = await client.get("rec-1")

        assert recording.id == "rec-1"
        assert recording.transcription_status == TranscriptionStatus.PENDING
        request = httpx_mock.get_request()
        assert request.headers["X-Internal-Secret"] == "test-secret"

    async def test_get_missing_returns_none(self, client, httpx_mock):
        httpx_mock.add_response(
            url=f"{BASE_URL}/internal/recordings/missing", method="GET", status_code=404
        )
        assert await client.get("missing") is None

    async def test_get_server_error_raises(self, client, httpx_mock):
        httpx_mock.add_response(
            url=f"{BASE_URL}/internal/recordings/rec-1", method="GET", status_code=500
        )
        with pytest.raises(StorageError, match="HTTP 500") as exc_info:
            await client.get("rec-1")
        assert exc_info.value.operation == "get_recording"
        assert exc_info.value.recording_id == "rec-1"

    async def test_find_by_job_sends_query(self, client, httpx_mock, recording_factory):
        httpx_mock.add_response(
            method="GET", json={"recordings": [recording_factory().to_dict()]}
        )

        recording = await client.find_by_job("salad", "job-1")

        assert recording.id == "rec-1"
        params = httpx_mock.get_request().url.params
        assert params["provider"] == "salad"
        assert params["jobId"] == "job-1"

    async def test_find_by_job_no_match(self, client, httpx_mock):
        httpx_mock.add_response(method="GET", json={"recordings": []})
        assert await client.find_by_job("salad", "job-1") is None

    async def test_list_by_status_accepts_bare_list(
        self, client, httpx_mock, recording_factory
    ):
        httpx_mock.add_response(method="GET", json=[recording_factory().to_dict()])

        recordings = await client.list_by_status(
            [TranscriptionStatus.PENDING, TranscriptionStatus.PROCESSING], limit=10
        )

        assert [r.id for r in recordings] == ["rec-1"]
        params = httpx_mock.get_request().url.params
        assert params["status"] == "pending,processing"
        assert params["limit"] == "10"

    async def test_find_retry_eligible_rechecks_results(
        self, client, httpx_mock, recording_factory
    ):
        due = recording_factory(
            "due",
            transcription_status=TranscriptionStatus.RETRYING,
            retry_policy=RetryPolicy(current_retry=1, next_retry_at=T0 - timedelta(minutes=1)),
        )
        spent = recording_factory(
            "spent",
            transcription_status=TranscriptionStatus.FAILED,
            retry_policy=RetryPolicy(
                max_retries=3, current_retry=3, next_retry_at=T0 - timedelta(minutes=1)
            ),
        )
        httpx_mock.add_response(
            method="GET", json={"recordings": [due.to_dict(), spent.to_dict()]}
        )

        eligible = await client.find_retry_eligible(T0)

        assert [r.id for r in eligible] == ["due"]
        params = httpx_mock.get_request().url.params
        assert params["status"] == "failed,retrying"
        assert params["retryBefore"] == "2026-03-01T12:00:00Z"


class TestRecordingWrites:
    async def test_create_posts_recording(self, client, httpx_mock, recording_factory):
        recording = recording_factory()
        httpx_mock.add_response(
            url=f"{BASE_URL}/internal/recordings",
            method="POST",
            status_code=201,
            json={"recording": recording.to_dict()},
        )

        created = await client.create(recording)

        assert created == recording
        body = json.loads(httpx_mock.get_request().content)
        assert body["recording"]["id"] == "rec-1"

    async def test_apply_sends_expectations(self, client, httpx_mock, recording_factory):
        transition = state_machine.begin_attempt(recording_factory(), "fake", T0)
        httpx_mock.add_response(
            url=f"{BASE_URL}/internal/recordings/rec-1",
            method="PUT",
            json={"recording": transition.recording.to_dict()},
        )

        stored = await client.apply(transition)

        assert stored.transcription_status == TranscriptionStatus.PROCESSING
        body = json.loads(httpx_mock.get_request().content)
        assert body["expectedStatus"] == "pending"
        assert body["expectedVersion"] == 0
        assert body["recording"]["transcriptionStatus"] == "processing"
        assert body["recording"]["version"] == 1

    async def test_apply_conflict_returns_none(self, client, httpx_mock, recording_factory):
        transition = state_machine.begin_attempt(recording_factory(), "fake", T0)
        httpx_mock.add_response(
            url=f"{BASE_URL}/internal/recordings/rec-1", method="PUT", status_code=409
        )
        assert await client.apply(transition) is None

    async def test_apply_interrupted_after_commit(self, client, httpx_mock, recording_factory):
        transition = state_machine.begin_attempt(recording_factory(), "fake", T0)
        url = f"{BASE_URL}/internal/recordings/rec-1"
        httpx_mock.add_exception(httpx.ReadTimeout("read timed out"), url=url, method="PUT")
        httpx_mock.add_response(
            url=url, method="GET", json={"recording": transition.recording.to_dict()}
        )

        stored = await client.apply(transition)

        assert stored is not None
        assert stored.version == 1
        assert stored.transcription_status == TranscriptionStatus.PROCESSING
        assert [r.method for r in httpx_mock.get_requests()] == ["PUT", "GET"]

    async def test_apply_interrupted_before_commit_resends(
        self, client, httpx_mock, recording_factory
    ):
        original = recording_factory()
        transition = state_machine.begin_attempt(original, "fake", T0)
        url = f"{BASE_URL}/internal/recordings/rec-1"
        httpx_mock.add_exception(httpx.ConnectError("connection reset"), url=url, method="PUT")
        httpx_mock.add_response(url=url, method="GET", json={"recording": original.to_dict()})
        httpx_mock.add_response(
            url=url, method="PUT", json={"recording": transition.recording.to_dict()}
        )

        stored = await client.apply(transition)

        assert stored.transcription_status == TranscriptionStatus.PROCESSING
        assert [r.method for r in httpx_mock.get_requests()] == ["PUT", "GET", "PUT"]

    async def test_apply_interrupted_other_writer_won(
        self, client, httpx_mock, recording_factory
    ):
        original = recording_factory()
        transition = state_machine.begin_attempt(original, "fake", T0)
        winner = state_machine.begin_attempt(original, "other", T0 + timedelta(seconds=5))
        url = f"{BASE_URL}/internal/recordings/rec-1"
        httpx_mock.add_exception(httpx.ReadTimeout("read timed out"), url=url, method="PUT")
        httpx_mock.add_response(
            url=url, method="GET", json={"recording": winner.recording.to_dict()}
        )

        assert await client.apply(transition) is None
        assert [r.method for r in httpx_mock.get_requests()] == ["PUT", "GET"]

    async def test_apply_gives_up_after_repeated_interruptions(
        self, client, httpx_mock, recording_factory
    ):
        original = recording_factory()
        transition = state_machine.begin_attempt(original, "fake", T0)
        url = f"{BASE_URL}/internal/recordings/rec-1"
        for _ in range(3):
            httpx_mock.add_exception(httpx.ConnectError("connection reset"), url=url, method="PUT")
            httpx_mock.add_response(url=url, method="GET", json={"recording": original.to_dict()})

        with pytest.raises(StorageError, match="connection reset") as exc_info:
            await client.apply(transition)

        assert exc_info.value.operation == "apply_transition"
        assert len(httpx_mock.get_requests(method="PUT")) == 3

    async def test_network_error_retried_then_raised(self, client, httpx_mock):
        for _ in range(3):
            httpx_mock.add_exception(httpx.ConnectError("connection refused"))

        with patch(
            "transcription_engine.utils.retry.asyncio.sleep", new_callable=AsyncMock
        ) as sleep:
            with pytest.raises(StorageError, match="connection refused"):
                await client.get("rec-1")

        assert len(httpx_mock.get_requests()) == 3
        assert sleep.await_count == 2


class TestSessionGateway:
    async def test_update_session_status(self, client, httpx_mock):
        httpx_mock.add_response(
            url=f"{BASE_URL}/internal/sessions/sess-1/status", method="POST"
        )

        await client.update_session_status("sess-1", "completed")

        body = json.loads(httpx_mock.get_request().content)
        assert body == {"status": "completed"}

    async def test_request_session_summary(self, client, httpx_mock):
        httpx_mock.add_response(
            url=f"{BASE_URL}/internal/sessions/sess-1/summary", method="POST"
        )

        await client.request_session_summary("sess-1", "rec-1")

        body = json.loads(httpx_mock.get_request().content)
        assert body == {"recordingId": "rec-1"}

    async def test_session_failure_raises(self, client, httpx_mock):
        httpx_mock.add_response(
            url=f"{BASE_URL}/internal/sessions/sess-1/summary",
            method="POST",
            status_code=503,
        )
        with pytest.raises(StorageError) as exc_info:
            await client.request_session_summary("sess-1", "rec-1")
        assert exc_info.value.operation == "request_session_summary"
