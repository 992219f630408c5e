"""Provider test harness.

Runs one uploaded file through one provider without touching persistence.
The preview is built with the same pure state-machine functions the
orchestrator uses, so operators see exactly what the recording would look
like. Temporary files and staged objects are always removed.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from transcription_engine.asr.interface import (
    AudioSource,
    PendingJob,
    StillProcessing,
    TranscribeOptions,
    TranscriptionResult,
)
from transcription_engine.asr.registry import ProviderRegistry
from transcription_engine.audio.probe import (
    content_type_for,
    format_from_filename,
    probe_audio,
)
from transcription_engine.recording import state_machine
from transcription_engine.recording.models import AudioDescriptor, RetryPolicy
from transcription_engine.storage.object_store import ObjectStorageClient
from transcription_engine.utils.clock import utc_now
from transcription_engine.utils.errors import (
    AudioProbeError,
    ProviderError,
    ProviderRejected,
    ProviderUnavailable,
    StorageError,
)

logger = logging.getLogger(__name__)

STAGING_PREFIX = "transcription-tests"


@dataclass
class HarnessReport:
    """Outcome of a single harness run."""

    provider: str
    completion_mode: str | None
    result: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    preview: dict[str, Any] = field(default_factory=dict)
    elapsed_ms: int = 0

    @property
    def success(self) -> bool:
        return self.result is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "provider": self.provider,
            "completionMode": self.completion_mode,
            "result": self.result,
            "error": self.error,
            "preview": self.preview,
            "elapsedMs": self.elapsed_ms,
        }


class ProviderTestHarness:
    """Exercises a single provider end to end.

    Args:
        registry: Configured provider engines.
        object_store: Used to stage audio for URL-only providers.
        poll_interval: Seconds between inline polls for job-based providers.
        poll_timeout: Give up polling after this many seconds.
        signed_url_ttl: Lifetime of the staged object's signed URL.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        object_store: ObjectStorageClient | None = None,
        poll_interval: float = 5.0,
        poll_timeout: float = 300.0,
        signed_url_ttl: int = 3600,
    ) -> None:
        self.registry = registry
        self.object_store = object_store
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.signed_url_ttl = signed_url_ttl

    async def run(
        self,
        audio_bytes: bytes,
        filename: str,
        provider: str,
        language: str | None = None,
    ) -> HarnessReport:
        """Transcribe an upload once and report the would-be recording.

        Raises:
            UnsupportedProviderError: If the provider is not configured.
        """
        engine = self.registry.get(provider)
        started = time.monotonic()
        workdir = tempfile.mkdtemp(prefix="transcription-test-")
        staged_key: str | None = None
        safe_name = os.path.basename(filename) or "audio"
        audio_format = format_from_filename(safe_name)

        try:
            path = os.path.join(workdir, safe_name)
            with open(path, "wb") as f:
                f.write(audio_bytes)

            duration = None
            try:
                probed = probe_audio(path)
                duration = probed.duration_seconds
                audio_format = audio_format or probed.format
            except AudioProbeError as exc:
                logger.warning("Could not probe test upload: %s", exc)

            descriptor = AudioDescriptor(
                path=path,
                duration_seconds=duration,
                size_bytes=len(audio_bytes),
                format=audio_format,
                language=language or "en",
            )
            now = utc_now()
            preview = state_machine.new_recording(
                f"test-{uuid.uuid4().hex[:12]}",
                None,
                None,
                descriptor,
                policy=RetryPolicy(max_retries=1, fallback_enabled=False),
                now=now,
            )
            preview = state_machine.begin_attempt(preview, provider, now).recording

            url = None
            outcome: TranscriptionResult | ProviderError
            try:
                if engine.requires_url:
                    staged_key, url = await asyncio.to_thread(
                        self._stage, path, safe_name, audio_format
                    )
                source = AudioSource(
                    path=path,
                    url=url,
                    filename=safe_name,
                    format=audio_format,
                    duration_seconds=duration,
                )
                options = TranscribeOptions(
                    language=language or "en", recording_id=preview.id
                )
                submitted = await engine.transcribe(source, options)
                if isinstance(submitted, PendingJob):
                    preview = state_machine.record_job_submission(
                        preview, submitted.job_id, utc_now()
                    ).recording
                    outcome = await self._poll_until_done(engine, submitted.job_id)
                else:
                    outcome = submitted
            except ProviderError as exc:
                outcome = exc
            except StorageError as exc:
                outcome = ProviderUnavailable(
                    f"Could not stage audio: {exc.message}",
                    provider=provider,
                    code="audio_unavailable",
                )

            transition = state_machine.resolve_attempt(preview, outcome, utc_now())
            if transition is not None:
                preview = transition.recording

            report = HarnessReport(
                provider=provider,
                completion_mode=engine.completion_mode.value,
                preview=preview.to_public_dict(),
            )
            if isinstance(outcome, TranscriptionResult):
                report.result = outcome.to_dict()
            else:
                report.error = {
                    "message": outcome.message,
                    "code": outcome.code,
                    "recoverable": outcome.recoverable,
                }
            report.elapsed_ms = int((time.monotonic() - started) * 1000)
            logger.info(
                "Provider test finished",
                extra={
                    "provider": provider,
                    "status": preview.transcription_status.value,
                    "duration_ms": report.elapsed_ms,
                },
            )
            return report
        finally:
            shutil.rmtree(workdir, ignore_errors=True)
            if staged_key and self.object_store is not None:
                try:
                    await asyncio.to_thread(self.object_store.delete_object, staged_key)
                except StorageError:
                    logger.error(
                        "Failed to delete staged test object %s",
                        staged_key,
                        exc_info=True,
                    )

    def _stage(
        self, path: str, filename: str, audio_format: str | None
    ) -> tuple[str, str]:
        """Upload the test file and sign a URL for it.

        Raises:
            ProviderRejected: If no object storage is configured.
            StorageError: If the upload or signing fails.
        """
        if self.object_store is None:
            raise ProviderRejected(
                "Provider requires a URL but object storage is not configured",
                code="audio_unavailable",
            )
        key = f"{STAGING_PREFIX}/{uuid.uuid4().hex}/{filename}"
        with open(path, "rb") as f:
            self.object_store.put_object(key, f.read(), content_type_for(audio_format))
        try:
            return key, self.object_store.generate_signed_url(key, self.signed_url_ttl)
        except StorageError:
            self.object_store.delete_object(key)
            raise

    async def _poll_until_done(
        self, engine: Any, job_id: str
    ) -> TranscriptionResult | ProviderError:
        deadline = time.monotonic() + self.poll_timeout
        while True:
            try:
                status = await engine.poll_status(job_id)
            except ProviderError as exc:
                return exc
            if not isinstance(status, StillProcessing):
                return status
            if time.monotonic() >= deadline:
                return ProviderUnavailable(
                    f"Job {job_id} still {status.remote_status} after "
                    f"{self.poll_timeout:.0f}s",
                    provider=engine.name,
                    job_id=job_id,
                    code="poll_timeout",
                )
            await asyncio.sleep(self.poll_interval)
