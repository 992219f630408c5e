"""Recording persistence boundary.

RecordingStore is the only way the engine reads or writes recordings.
apply() is a conditional write: it succeeds only while the stored status and
version still match the values the transition was derived from, and returns
None otherwise. Racing writers (webhook vs. scheduler poll) therefore produce
exactly one terminal transition.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

from transcription_engine.recording.models import Recording, TranscriptionStatus
from transcription_engine.recording.state_machine import (
    RETRYABLE_FROM,
    Transition,
    is_retry_eligible,
)
from transcription_engine.utils.errors import StorageError


class RecordingStore(ABC):
    """Abstract persistence for Recording values."""

    @abstractmethod
    async def get(self, recording_id: str) -> Recording | None:
        """Return the stored recording, or None if it does not exist."""

    @abstractmethod
    async def create(self, recording: Recording) -> Recording:
        """Persist a new recording.

        Raises:
            StorageError: If a recording with the same id already exists.
        """

    @abstractmethod
    async def apply(self, transition: Transition) -> Recording | None:
        """Conditionally write a transition.

        Returns:
            The stored recording, or None when the stored status or version
            no longer matches the transition's expectations.
        """

    @abstractmethod
    async def find_by_job(self, provider: str, job_id: str) -> Recording | None:
        """Look up a recording by its provider job id."""

    @abstractmethod
    async def list_by_status(
        self, statuses: Iterable[TranscriptionStatus], limit: int = 50
    ) -> list[Recording]:
        """Return up to limit recordings in any of the given statuses."""

    async def find_retry_eligible(self, now: datetime, limit: int = 50) -> list[Recording]:
        """Return recordings the scheduler may retry now.

        Records returned by the backing query are re-checked against
        is_retry_eligible so a lax query can never widen the selection.
        """
        candidates = await self.list_by_status(RETRYABLE_FROM, limit=limit)
        return [r for r in candidates if is_retry_eligible(r, now)][:limit]

    async def aclose(self) -> None:
        """Release resources held by the store."""


class InMemoryRecordingStore(RecordingStore):
    """Process-local store used by tests and single-node deployments.

    Values are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self, recordings: Iterable[Recording] | None = None) -> None:
        self._recordings: dict[str, Recording] = {}
        for recording in recordings or []:
            self._recordings[recording.id] = copy.deepcopy(recording)

    async def get(self, recording_id: str) -> Recording | None:
        recording = self._recordings.get(recording_id)
        return copy.deepcopy(recording) if recording else None

    async def create(self, recording: Recording) -> Recording:
        if recording.id in self._recordings:
            raise StorageError(
                f"Recording '{recording.id}' already exists",
                recording_id=recording.id,
                operation="create",
            )
        self._recordings[recording.id] = copy.deepcopy(recording)
        return copy.deepcopy(recording)

    async def apply(self, transition: Transition) -> Recording | None:
        recording = transition.recording
        current = self._recordings.get(recording.id)
        if current is None:
            raise StorageError(
                f"Recording '{recording.id}' does not exist",
                recording_id=recording.id,
                operation="apply",
            )
        if (
            current.transcription_status != transition.expected_status
            or current.version != transition.expected_version
        ):
            return None
        self._recordings[recording.id] = copy.deepcopy(recording)
        return copy.deepcopy(recording)

    async def find_by_job(self, provider: str, job_id: str) -> Recording | None:
        for recording in self._recordings.values():
            metadata = recording.transcription_metadata
            if metadata and metadata.job_id == job_id and metadata.provider == provider:
                return copy.deepcopy(recording)
        return None

    async def list_by_status(
        self, statuses: Iterable[TranscriptionStatus], limit: int = 50
    ) -> list[Recording]:
        wanted = set(statuses)
        matches = sorted(
            (r for r in self._recordings.values() if r.transcription_status in wanted),
            key=lambda r: r.updated_at,
        )
        return [copy.deepcopy(r) for r in matches[:limit]]

    async def find_retry_eligible(self, now: datetime, limit: int = 50) -> list[Recording]:
        matches = sorted(
            (r for r in self._recordings.values() if is_retry_eligible(r, now)),
            key=lambda r: r.retry_policy.next_retry_at,
        )
        return [copy.deepcopy(r) for r in matches[:limit]]
