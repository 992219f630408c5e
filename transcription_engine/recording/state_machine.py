"""Recording state machine.

Pure functions over Recording values. Each operation takes the current value
and returns a Transition holding the next value, the status and version it
was derived from, and the side effects it implies. Nothing here performs I/O:
RecordingStore.apply() writes a Transition with a single conditional update,
so two writers racing from the same pre-state cannot both succeed.

States:
    pending -> processing -> completed | retrying | failed
    retrying -> processing
    failed -> processing (only while is_retry_eligible)
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from transcription_engine.asr.interface import (
    StillProcessing,
    TranscriptionMetadata,
    TranscriptionResult,
)
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
from transcription_engine.utils.clock import utc_now
from transcription_engine.utils.errors import (
    InvalidTransition,
    ProviderError,
    ProviderRejected,
    RetryBudgetExhausted,
)
from transcription_engine.utils.retry import (
    DEFAULT_BASE_DELAY_SECONDS,
    DEFAULT_MAX_DELAY_SECONDS,
    backoff_delay,
)

RETRYABLE_FROM = (TranscriptionStatus.FAILED, TranscriptionStatus.RETRYING)


class Effect(str, Enum):
    ATTEMPT_APPENDED = "attempt_appended"
    ATTEMPT_RESOLVED = "attempt_resolved"
    JOB_SUBMITTED = "job_submitted"
    RETRY_SCHEDULED = "retry_scheduled"
    RETRY_EXHAUSTED = "retry_exhausted"
    FAILED = "failed"
    COMPLETED = "completed"


@dataclass
class Transition:
    """The next Recording value plus what it was derived from."""

    recording: Recording
    expected_status: TranscriptionStatus
    expected_version: int
    effects: list[Effect] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return Effect.COMPLETED in self.effects

    @property
    def status(self) -> TranscriptionStatus:
        return self.recording.transcription_status


def _next_value(recording: Recording, now: datetime) -> Recording:
    updated = copy.deepcopy(recording)
    updated.version = recording.version + 1
    updated.updated_at = now
    return updated


def _transition(
    previous: Recording, updated: Recording, effects: list[Effect]
) -> Transition:
    return Transition(
        recording=updated,
        expected_status=previous.transcription_status,
        expected_version=previous.version,
        effects=effects,
    )


def _elapsed_ms(started_at: datetime, now: datetime) -> int:
    return max(0, int((now - started_at).total_seconds() * 1000))


def new_recording(
    recording_id: str,
    session_id: str | None,
    owner_id: str | None,
    audio: AudioDescriptor,
    policy: RetryPolicy | None = None,
    recording_type: RecordingType = RecordingType.SESSION_RECORDING,
    now: datetime | None = None,
) -> Recording:
    """Create the pending Recording for a fresh upload."""
    created = now or utc_now()
    return Recording(
        id=recording_id,
        session_id=session_id,
        owner_id=owner_id,
        recording_type=recording_type,
        audio=audio,
        transcription_status=TranscriptionStatus.PENDING,
        retry_policy=policy or RetryPolicy(),
        version=0,
        created_at=created,
        updated_at=created,
    )


def is_retry_eligible(recording: Recording, now: datetime) -> bool:
    """The single predicate deciding whether a recording may be retried.

    The current_retry bound is checked independently of the status so a
    record left inconsistent by a crash is still never re-selected.
    """
    policy = recording.retry_policy
    return (
        recording.transcription_status in RETRYABLE_FROM
        and policy.fallback_enabled
        and policy.current_retry < policy.max_retries
        and policy.next_retry_at is not None
        and policy.next_retry_at <= now
    )


def compute_next_retry_at(
    policy: RetryPolicy,
    now: datetime,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
) -> datetime:
    """Schedule the next retry from the number of retries consumed so far."""
    delay = backoff_delay(
        policy.current_retry,
        base_delay=base_delay,
        multiplier=policy.backoff_multiplier,
        max_delay=max_delay,
    )
    return now + timedelta(seconds=delay)


def is_stale(recording: Recording, now: datetime, max_age: float) -> bool:
    """True for a processing recording whose attempt has run past max_age.

    A processing recording without an open attempt (a crash between writes)
    is judged by its last update time.
    """
    if recording.transcription_status != TranscriptionStatus.PROCESSING:
        return False
    open_attempt = recording.open_attempt
    started = open_attempt.started_at if open_attempt else recording.updated_at
    return (now - started).total_seconds() > max_age


def begin_attempt(recording: Recording, provider: str, now: datetime) -> Transition:
    """Start a provider attempt: pending/retrying (or eligible failed) -> processing.

    Does not touch current_retry; the counter is consumed when the failure
    that scheduled this retry was recorded.

    Raises:
        InvalidTransition: From processing, completed, or an ineligible failed.
    """
    status = recording.transcription_status
    allowed = status in (TranscriptionStatus.PENDING, TranscriptionStatus.RETRYING) or (
        status == TranscriptionStatus.FAILED and is_retry_eligible(recording, now)
    )
    if not allowed:
        raise InvalidTransition(
            f"Cannot begin an attempt from status '{status.value}'",
            recording_id=recording.id,
            current_status=status.value,
            operation="begin_attempt",
        )

    updated = _next_value(recording, now)
    updated.transcription_status = TranscriptionStatus.PROCESSING
    updated.retry_policy.next_retry_at = None
    # A new attempt gets a new correlation; old job ids must not match.
    updated.transcription_metadata = None
    updated.attempts.append(
        AttemptRecord(
            attempt_number=len(recording.attempts) + 1,
            provider_name=provider,
            outcome=AttemptOutcome.ATTEMPTING,
            started_at=now,
        )
    )
    return _transition(recording, updated, [Effect.ATTEMPT_APPENDED])


def record_job_submission(
    recording: Recording, job_id: str, now: datetime
) -> Transition:
    """Store the remote job id so webhooks and polling can correlate.

    Raises:
        InvalidTransition: If the recording has no open attempt.
    """
    open_attempt = recording.open_attempt
    if (
        recording.transcription_status != TranscriptionStatus.PROCESSING
        or open_attempt is None
    ):
        raise InvalidTransition(
            "Cannot record a job submission without an open attempt",
            recording_id=recording.id,
            current_status=recording.transcription_status.value,
            operation="record_job_submission",
        )

    updated = _next_value(recording, now)
    updated.attempts[-1].job_id = job_id
    metadata = updated.transcription_metadata or TranscriptionMetadata(
        provider=open_attempt.provider_name
    )
    metadata.provider = open_attempt.provider_name
    metadata.job_id = job_id
    updated.transcription_metadata = metadata
    return _transition(recording, updated, [Effect.JOB_SUBMITTED])


def resolve_attempt(
    recording: Recording,
    outcome: TranscriptionResult | StillProcessing | ProviderError,
    now: datetime,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
) -> Transition | None:
    """Apply a provider outcome to a processing recording.

    This is the one transition shared by synchronous responses, polling and
    webhooks.

    Args:
        recording: Current value.
        outcome: Normalized result, still-processing marker or provider error.
        now: Transition time.
        base_delay: Seconds before the first scheduled retry.
        max_delay: Cap on the scheduled retry delay.

    Returns:
        The Transition, or None when nothing changes (still processing, or
        the recording is already terminal).

    Raises:
        InvalidTransition: From pending or retrying.
    """
    status = recording.transcription_status
    if status.is_terminal:
        return None
    if status != TranscriptionStatus.PROCESSING:
        raise InvalidTransition(
            f"Cannot resolve an attempt from status '{status.value}'",
            recording_id=recording.id,
            current_status=status.value,
            operation="resolve_attempt",
        )

    if isinstance(outcome, StillProcessing):
        return None

    if isinstance(outcome, TranscriptionResult):
        if outcome.text and outcome.text.strip():
            return _complete(recording, outcome, now)
        outcome = ProviderRejected(
            "Provider returned an empty transcript",
            provider=outcome.metadata.provider,
            code="empty_transcript",
            job_id=outcome.metadata.job_id,
        )

    return _fail(recording, outcome, now, base_delay, max_delay)


def _complete(
    recording: Recording, result: TranscriptionResult, now: datetime
) -> Transition:
    updated = _next_value(recording, now)
    metadata = copy.deepcopy(result.metadata)
    if not metadata.job_id:
        metadata.job_id = recording.job_id
    if updated.open_attempt is not None:
        attempt = updated.attempts[-1]
        attempt.outcome = AttemptOutcome.SUCCESS
        attempt.completed_at = now
        attempt.duration_ms = _elapsed_ms(attempt.started_at, now)
        if metadata.job_id and not attempt.job_id:
            attempt.job_id = metadata.job_id
        if metadata.processing_time_ms is None:
            metadata.processing_time_ms = attempt.duration_ms

    updated.transcription_status = TranscriptionStatus.COMPLETED
    updated.transcription_text = result.text.strip()
    updated.transcription_metadata = metadata
    updated.error = None
    updated.retry_policy.next_retry_at = None
    if result.duration_seconds and not updated.audio.duration_seconds:
        updated.audio.duration_seconds = result.duration_seconds
    return _transition(
        recording, updated, [Effect.ATTEMPT_RESOLVED, Effect.COMPLETED]
    )


def _fail(
    recording: Recording,
    error: ProviderError,
    now: datetime,
    base_delay: float,
    max_delay: float,
) -> Transition:
    policy = recording.retry_policy
    # Decide before any field of the next value is written.
    should_retry = (
        error.recoverable
        and policy.fallback_enabled
        and policy.current_retry < policy.max_retries
    )

    updated = _next_value(recording, now)
    attempt_number = None
    provider_name = error.provider
    if updated.open_attempt is not None:
        attempt = updated.attempts[-1]
        attempt.outcome = AttemptOutcome.FAILED
        attempt.error = error.message
        attempt.completed_at = now
        attempt.duration_ms = _elapsed_ms(attempt.started_at, now)
        attempt_number = attempt.attempt_number
        provider_name = provider_name or attempt.provider_name

    effects = [Effect.ATTEMPT_RESOLVED]
    code = error.code
    message = error.message
    recoverable = error.recoverable

    if should_retry:
        next_retry_at = compute_next_retry_at(policy, now, base_delay, max_delay)
        updated.retry_policy.current_retry = policy.current_retry + 1
        if updated.retry_policy.current_retry < policy.max_retries:
            updated.transcription_status = TranscriptionStatus.RETRYING
            updated.retry_policy.next_retry_at = next_retry_at
            effects.append(Effect.RETRY_SCHEDULED)
        else:
            exhausted = RetryBudgetExhausted(
                f"Retry budget exhausted after {updated.retry_policy.current_retry} "
                f"retries: {error.message}",
                recording_id=recording.id,
                attempts=len(updated.attempts),
            )
            updated.transcription_status = TranscriptionStatus.FAILED
            updated.retry_policy.next_retry_at = None
            code = exhausted.code
            message = exhausted.message
            recoverable = False
            effects.extend([Effect.RETRY_EXHAUSTED, Effect.FAILED])
    else:
        updated.transcription_status = TranscriptionStatus.FAILED
        updated.retry_policy.next_retry_at = None
        effects.append(Effect.FAILED)

    updated.error = ErrorSnapshot(
        message=message,
        code=code,
        timestamp=now,
        attempt_number=attempt_number,
        provider_name=provider_name,
        is_recoverable=recoverable,
    )
    return _transition(recording, updated, effects)
