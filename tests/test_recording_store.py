"""Tests for the in-memory recording store."""

from datetime import UTC, datetime, timedelta

import pytest

from transcription_engine.recording import state_machine
from transcription_engine.recording.models import RetryPolicy, TranscriptionStatus
from transcription_engine.storage.recording_store import InMemoryRecordingStore
from transcription_engine.utils.errors import ProviderUnavailable, StorageError

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class TestCreateAndGet:
    async def test_get_missing_returns_none(self, store) -> None:
        assert await store.get("nope") is None

    async def test_create_then_get(self, store, recording_factory) -> None:
        recording = recording_factory()
        await store.create(recording)
        stored = await store.get("rec-1")
        assert stored == recording
        assert stored is not recording

    async def test_duplicate_create_raises(self, store, recording_factory) -> None:
        await store.create(recording_factory())
        with pytest.raises(StorageError) as exc_info:
            await store.create(recording_factory())
        assert exc_info.value.operation == "create"

    async def test_returned_values_are_copies(self, store, recording_factory) -> None:
        await store.create(recording_factory())
        fetched = await store.get("rec-1")
        fetched.transcription_status = TranscriptionStatus.COMPLETED
        assert (await store.get("rec-1")).transcription_status == TranscriptionStatus.PENDING


class TestApply:
    """Tests for the conditional write."""

    async def test_applies_matching_transition(self, store, recording_factory) -> None:
        recording = await store.create(recording_factory())
        transition = state_machine.begin_attempt(recording, "fake", T0)

        stored = await store.apply(transition)

        assert stored.transcription_status == TranscriptionStatus.PROCESSING
        assert (await store.get("rec-1")).version == 1

    async def test_second_writer_from_same_state_loses(
        self, store, recording_factory, result_factory
    ) -> None:
        recording = await store.create(recording_factory())
        processing = await store.apply(state_machine.begin_attempt(recording, "fake", T0))

        webhook = state_machine.resolve_attempt(processing, result_factory(), T0)
        poller = state_machine.resolve_attempt(
            processing, ProviderUnavailable("timeout", provider="fake"), T0
        )

        assert await store.apply(webhook) is not None
        assert await store.apply(poller) is None
        stored = await store.get("rec-1")
        assert stored.transcription_status == TranscriptionStatus.COMPLETED

    async def test_stale_version_conflicts(self, store, recording_factory) -> None:
        recording = await store.create(recording_factory())
        transition = state_machine.begin_attempt(recording, "fake", T0)
        transition.expected_version = 5
        assert await store.apply(transition) is None

    async def test_missing_recording_raises(self, recording_factory) -> None:
        transition = state_machine.begin_attempt(recording_factory(), "fake", T0)
        with pytest.raises(StorageError):
            await InMemoryRecordingStore().apply(transition)


class TestQueries:
    async def test_find_by_job_matches_provider(self, store, recording_factory) -> None:
        recording = await store.create(recording_factory())
        recording = await store.apply(state_machine.begin_attempt(recording, "salad", T0))
        await store.apply(state_machine.record_job_submission(recording, "job-9", T0))

        assert (await store.find_by_job("salad", "job-9")).id == "rec-1"
        assert await store.find_by_job("assemblyai", "job-9") is None
        assert await store.find_by_job("salad", "other") is None

    async def test_list_by_status_oldest_first(self, recording_factory) -> None:
        store = InMemoryRecordingStore(
            [
                recording_factory("new", now=T0 + timedelta(minutes=5)),
                recording_factory("old", now=T0),
                recording_factory(
                    "done", transcription_status=TranscriptionStatus.COMPLETED
                ),
            ]
        )
        pending = await store.list_by_status([TranscriptionStatus.PENDING])
        assert [r.id for r in pending] == ["old", "new"]
        assert len(await store.list_by_status([TranscriptionStatus.PENDING], limit=1)) == 1

    async def test_find_retry_eligible_orders_by_due_time(self, recording_factory) -> None:
        def retrying(recording_id, due, **policy):
            return recording_factory(
                recording_id,
                transcription_status=TranscriptionStatus.RETRYING,
                retry_policy=RetryPolicy(current_retry=1, next_retry_at=due, **policy),
            )

        store = InMemoryRecordingStore(
            [
                retrying("later", T0 - timedelta(seconds=10)),
                retrying("earlier", T0 - timedelta(minutes=10)),
                retrying("future", T0 + timedelta(minutes=1)),
                retrying("spent", T0 - timedelta(hours=1), max_retries=1),
                retrying("no-fallback", T0 - timedelta(hours=1), fallback_enabled=False),
            ]
        )

        eligible = await store.find_retry_eligible(T0)

        assert [r.id for r in eligible] == ["earlier", "later"]
        assert len(await store.find_retry_eligible(T0, limit=1)) == 1
