"""Transcription orchestrator.

Drives recordings through provider attempts and is the single place where
provider outcomes become state transitions. Synchronous responses, scheduler
polls and webhook callbacks all end in apply_outcome(), which runs
state_machine.resolve_attempt() and writes the result with one conditional
store update.

Attempt flow: begin_attempt -> prepare audio -> transcribe ->
    PendingJob: record_job_submission (polling / webhook resolves later)
    result or error: apply_outcome -> downstream trigger on completion
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
import uuid

from transcription_engine.asr.interface import (
    ASREngine,
    AudioSource,
    CompletionMode,
    PendingJob,
    StillProcessing,
    TranscribeOptions,
    TranscriptionResult,
)
from transcription_engine.asr.registry import ProviderRegistry
from transcription_engine.config import EngineSettings
from transcription_engine.downstream.trigger import DownstreamTrigger
from transcription_engine.observability.metrics import (
    AttemptMetrics,
    StageTimer,
    log_attempt_metrics,
)
from transcription_engine.recording import state_machine
from transcription_engine.recording.models import (
    AudioDescriptor,
    Recording,
    RecordingType,
    RetryPolicy,
    TranscriptionStatus,
)
from transcription_engine.sentiment.interface import SentimentAnalyzer
from transcription_engine.sentiment.runner import run_sentiment_analysis
from transcription_engine.storage.object_store import ObjectStorageClient
from transcription_engine.storage.recording_store import RecordingStore
from transcription_engine.utils.clock import utc_now
from transcription_engine.utils.errors import (
    ProviderError,
    ProviderRejected,
    ProviderUnavailable,
    StorageError,
)
from transcription_engine.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

Outcome = TranscriptionResult | StillProcessing | ProviderError


@retry_with_backoff(
    max_retries=2,
    base_delay=1.0,
    retryable_exceptions=(StorageError,),
)
async def _fetch_with_retry(object_store: ObjectStorageClient, key: str) -> bytes:
    """Fetch an object from object storage with retry."""
    return await asyncio.to_thread(object_store.fetch_object, key)


@retry_with_backoff(
    max_retries=2,
    base_delay=1.0,
    retryable_exceptions=(StorageError,),
)
async def _sign_with_retry(
    object_store: ObjectStorageClient, key: str, expires_in: int
) -> str:
    """Sign a GET URL with retry."""
    return await asyncio.to_thread(object_store.generate_signed_url, key, expires_in)


class TranscriptionOrchestrator:
    """Coordinates providers, the state machine and persistence.

    Args:
        store: Recording persistence.
        registry: Configured provider engines.
        settings: Engine settings (retry policy, webhook base URL).
        downstream: Trigger run after a completed transition.
        object_store: Used to fetch audio and sign provider URLs.
        sentiment_analyzer: Fills metadata.sentiment when the provider
            did not.
    """

    def __init__(
        self,
        store: RecordingStore,
        registry: ProviderRegistry,
        settings: EngineSettings,
        downstream: DownstreamTrigger | None = None,
        object_store: ObjectStorageClient | None = None,
        sentiment_analyzer: SentimentAnalyzer | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.settings = settings
        self.downstream = downstream
        self.object_store = object_store
        self.sentiment_analyzer = sentiment_analyzer
        self.active_recordings: set[str] = set()

    def default_policy(self, preferred_provider: str | None = None) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.settings.max_retries,
            backoff_multiplier=self.settings.backoff_multiplier,
            preferred_provider=preferred_provider,
        )

    def choose_provider(self, recording: Recording, requested: str | None = None) -> str:
        """Requested provider, else the preferred one, else the last used, else the default."""
        return (
            requested
            or recording.retry_policy.preferred_provider
            or recording.provider_name
            or self.settings.default_provider
        )

    async def submit_upload(
        self,
        audio: AudioDescriptor,
        session_id: str | None = None,
        owner_id: str | None = None,
        provider: str | None = None,
        recording_type: RecordingType = RecordingType.SESSION_RECORDING,
        recording_id: str | None = None,
        start: bool = True,
    ) -> Recording:
        """Create a pending recording for an upload and optionally start it.

        Returns:
            The recording after its first attempt was driven (or the
            pending recording when start is False).
        """
        recording = state_machine.new_recording(
            recording_id or uuid.uuid4().hex,
            session_id,
            owner_id,
            audio,
            policy=self.default_policy(provider),
            recording_type=recording_type,
            now=utc_now(),
        )
        recording = await self.store.create(recording)
        logger.info(
            "Created recording for upload",
            extra={"recording_id": recording.id, "session_id": session_id},
        )
        if not start:
            return recording
        return await self.drive_attempt(recording, self.choose_provider(recording, provider))

    async def start(self, recording_id: str, provider: str | None = None) -> Recording:
        """Drive the first attempt of a stored pending recording.

        Raises:
            StorageError: If the recording does not exist.
            InvalidTransition: If the recording cannot begin an attempt.
        """
        recording = await self.store.get(recording_id)
        if recording is None:
            raise StorageError(
                f"Recording '{recording_id}' not found",
                recording_id=recording_id,
                operation="get",
            )
        return await self.drive_attempt(recording, self.choose_provider(recording, provider))

    async def retry(self, recording: Recording) -> Recording:
        """Re-drive a retry-eligible recording with its preferred or last provider."""
        return await self.drive_attempt(recording, self.choose_provider(recording))

    async def drive_attempt(self, recording: Recording, provider: str) -> Recording:
        """Begin an attempt and call the provider once.

        Provider failures never propagate: they become error snapshots via
        apply_outcome().

        Raises:
            InvalidTransition: If the recording cannot begin an attempt.
        """
        now = utc_now()
        stored = await self.store.apply(state_machine.begin_attempt(recording, provider, now))
        if stored is None:
            logger.info(
                "Attempt not started; recording changed concurrently",
                extra={"recording_id": recording.id, "provider": provider},
            )
            current = await self.store.get(recording.id)
            return current or recording

        attempt_number = stored.attempts[-1].attempt_number
        log_extra = {
            "recording_id": stored.id,
            "provider": provider,
            "attempt_number": attempt_number,
        }
        logger.info("Starting transcription attempt", extra=log_extra)

        self.active_recordings.add(stored.id)
        workdir: str | None = None
        timer = StageTimer("transcribe")
        try:
            try:
                engine = self.registry.get(provider)
                workdir = tempfile.mkdtemp(prefix="transcription-")
                audio = await self._prepare_audio(stored, engine, workdir)
                options = TranscribeOptions(
                    language=stored.audio.language or "en",
                    recording_id=stored.id,
                    webhook_url=self._webhook_url(engine),
                )
                with timer:
                    outcome = await engine.transcribe(audio, options)
            except ProviderError as exc:
                outcome = exc
            except StorageError as exc:
                outcome = ProviderUnavailable(
                    f"Audio unavailable: {exc.message}",
                    recording_id=stored.id,
                    provider=provider,
                    code="audio_unavailable",
                )
            except Exception as exc:
                logger.error(
                    "Unexpected error from provider", exc_info=True, extra=log_extra
                )
                outcome = ProviderUnavailable(
                    f"Unexpected provider error: {exc}",
                    recording_id=stored.id,
                    provider=provider,
                    code="internal_error",
                )

            if isinstance(outcome, PendingJob):
                return await self._record_submission(stored, outcome, timer)

            result = await self.apply_outcome(stored, outcome)
            if result is None:
                return await self.store.get(stored.id) or stored
            return result
        finally:
            self.active_recordings.discard(stored.id)
            if workdir:
                shutil.rmtree(workdir, ignore_errors=True)

    async def _record_submission(
        self, recording: Recording, job: PendingJob, timer: StageTimer
    ) -> Recording:
        updated = await self.store.apply(
            state_machine.record_job_submission(recording, job.job_id, utc_now())
        )
        logger.info(
            "Provider accepted job",
            extra={
                "recording_id": recording.id,
                "provider": job.provider,
                "job_id": job.job_id,
                "duration_ms": timer.duration_ms,
            },
        )
        if updated is None:
            return await self.store.get(recording.id) or recording
        return updated

    def _webhook_url(self, engine: ASREngine) -> str | None:
        if engine.completion_mode != CompletionMode.WEBHOOK or not self.settings.app_url:
            return None
        return f"{self.settings.webhook_base_url}/{engine.name}"

    async def _prepare_audio(
        self, recording: Recording, engine: ASREngine, workdir: str
    ) -> AudioSource:
        """Resolve a path and/or URL the engine can read.

        Raises:
            ProviderRejected: If no usable audio location exists.
            StorageError: If object storage fails.
        """
        descriptor = recording.audio
        path = descriptor.path if descriptor.path and os.path.exists(descriptor.path) else None
        url = descriptor.url

        needs_url = engine.requires_url or (engine.accepts_url and not path)
        if not url and needs_url and descriptor.object_key and self.object_store:
            url = await _sign_with_retry(
                self.object_store,
                descriptor.object_key,
                self.settings.signed_url_ttl_seconds,
            )

        if (
            not path
            and not (url and engine.accepts_url)
            and descriptor.object_key
            and self.object_store
        ):
            data = await _fetch_with_retry(self.object_store, descriptor.object_key)
            filename = os.path.basename(descriptor.object_key) or "audio"
            path = os.path.join(workdir, filename)
            with open(path, "wb") as f:
                f.write(data)

        if not path and not url:
            raise ProviderRejected(
                "Recording has no readable audio",
                recording_id=recording.id,
                provider=engine.name,
                code="audio_unavailable",
            )

        return AudioSource(
            path=path,
            url=url,
            filename=os.path.basename(path) if path else None,
            format=descriptor.format,
            duration_seconds=descriptor.duration_seconds,
        )

    async def apply_outcome(self, recording: Recording, outcome: Outcome) -> Recording | None:
        """Resolve the open attempt of a processing recording.

        The shared convergence point for synchronous results, polling and
        webhooks.

        Returns:
            The stored recording after the transition, or None when nothing
            was written (still processing, already terminal, or another
            writer won the conditional update).

        Raises:
            InvalidTransition: If the recording is pending or retrying.
        """
        if (
            isinstance(outcome, TranscriptionResult)
            and recording.transcription_status == TranscriptionStatus.PROCESSING
        ):
            sentiment = await run_sentiment_analysis(
                outcome, self.sentiment_analyzer, recording_id=recording.id
            )
            if sentiment is not None:
                outcome.metadata.sentiment = sentiment

        transition = state_machine.resolve_attempt(
            recording,
            outcome,
            utc_now(),
            base_delay=self.settings.retry_base_delay_seconds,
            max_delay=self.settings.retry_max_delay_seconds,
        )
        if transition is None:
            return None

        stored = await self.store.apply(transition)
        if stored is None:
            logger.info(
                "Outcome not applied; recording changed concurrently",
                extra={"recording_id": recording.id, "status": transition.status.value},
            )
            return None

        self._log_attempt(stored, outcome)

        if transition.completed and self.downstream is not None:
            await self.downstream.on_completed(stored)
        return stored

    async def poll_job(self, recording: Recording) -> Recording | None:
        """Poll the provider job of a processing recording.

        Returns:
            The stored recording if a terminal outcome was applied, None if
            the job is still running or another writer got there first.
        """
        job_id = recording.job_id
        provider = recording.provider_name
        log_extra = {"recording_id": recording.id, "provider": provider, "job_id": job_id}

        try:
            engine = self.registry.get(provider)
            outcome: Outcome = await engine.poll_status(job_id)
        except ProviderError as exc:
            outcome = exc
        except Exception as exc:
            logger.error("Unexpected error polling job", exc_info=True, extra=log_extra)
            outcome = ProviderUnavailable(
                f"Unexpected poll error: {exc}",
                recording_id=recording.id,
                provider=provider,
                job_id=job_id,
                code="internal_error",
            )

        if isinstance(outcome, StillProcessing):
            logger.debug(
                "Job still processing (%s)", outcome.remote_status, extra=log_extra
            )
            return None
        return await self.apply_outcome(recording, outcome)

    def _log_attempt(self, recording: Recording, outcome: Outcome) -> None:
        attempt = recording.last_attempt
        if attempt is None:
            return
        try:
            completion_mode = self.registry.get(attempt.provider_name).completion_mode.value
        except ProviderError:
            completion_mode = "unknown"

        error = recording.error if not isinstance(outcome, TranscriptionResult) else None
        log_attempt_metrics(
            AttemptMetrics(
                recording_id=recording.id,
                provider=attempt.provider_name,
                attempt_number=attempt.attempt_number,
                outcome=recording.transcription_status.value,
                completion_mode=completion_mode,
                duration_ms=attempt.duration_ms or 0,
                audio_duration_seconds=recording.audio.duration_seconds,
                job_id=attempt.job_id,
                retry_count=recording.retry_policy.current_retry,
                error_code=error.code if error else None,
                error_message=error.message if error else None,
            )
        )


