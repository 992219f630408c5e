"""Periodic retry scheduler.

Each run performs three sweeps in order:
    1. poll: processing recordings with a submitted job on a job-based
       provider are polled; terminal outcomes go through apply_outcome().
    2. stale: processing recordings older than stale_after_seconds are
       resolved with a recoverable failure so they enter the retry path.
    3. retry: recordings matching is_retry_eligible are re-driven.

A recording is handled at most once per run, an overlapping run is skipped
rather than queued, and one recording's failure never aborts the sweep.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from transcription_engine.asr.interface import CompletionMode
from transcription_engine.observability.metrics import StageTimer, log_scheduler_run
from transcription_engine.orchestrator import TranscriptionOrchestrator
from transcription_engine.recording.models import Recording, TranscriptionStatus
from transcription_engine.recording.state_machine import is_stale
from transcription_engine.storage.recording_store import RecordingStore
from transcription_engine.utils.clock import to_iso, utc_now
from transcription_engine.utils.errors import ProviderError, ProviderUnavailable

logger = logging.getLogger(__name__)

JOB_BASED_MODES = (CompletionMode.POLLING, CompletionMode.WEBHOOK)


@dataclass
class RunSummary:
    """What one scheduler run did."""

    started_at: datetime
    finished_at: datetime | None = None
    skipped: bool = False
    polled: int = 0
    poll_completed: int = 0
    stale: int = 0
    retried: int = 0
    retry_completed: int = 0
    retry_failed: int = 0
    errors: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = to_iso(self.started_at)
        data["finished_at"] = to_iso(self.finished_at)
        return data


@dataclass
class SchedulerStats:
    """Aggregate counters across scheduler runs."""

    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    skipped_runs: int = 0
    last_run: datetime | None = None
    last_error: dict[str, Any] | None = None
    last_summary: RunSummary | None = None
    is_running: bool = False

    @property
    def success_rate(self) -> str:
        if self.total_runs == 0:
            return "N/A"
        return f"{self.successful_runs / self.total_runs * 100:.2f}%"

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRuns": self.total_runs,
            "successfulRuns": self.successful_runs,
            "failedRuns": self.failed_runs,
            "skippedRuns": self.skipped_runs,
            "lastRun": to_iso(self.last_run),
            "lastError": self.last_error,
            "lastSummary": self.last_summary.to_dict() if self.last_summary else None,
            "isRunning": self.is_running,
            "successRate": self.success_rate,
        }


class RetryScheduler:
    """Background sweep over processing and retry-eligible recordings.

    Args:
        orchestrator: Convergence point for outcomes and attempts.
        store: Recording persistence.
        interval_seconds: Delay between runs.
        batch_size: Maximum recordings fetched per sweep.
        stale_after_seconds: Age after which a processing attempt is
            abandoned.
    """

    def __init__(
        self,
        orchestrator: TranscriptionOrchestrator,
        store: RecordingStore,
        interval_seconds: float = 300.0,
        batch_size: int = 50,
        stale_after_seconds: float = 5 * 60 * 60,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size
        self.stale_after_seconds = stale_after_seconds
        self.stats = SchedulerStats()
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        """True while a run is in progress."""
        return self.stats.is_running

    def start(self) -> None:
        """Start the periodic loop on the current event loop."""
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="retry-scheduler")
        logger.info(
            "Retry scheduler started (interval %.0fs, batch %d)",
            self.interval_seconds,
            self.batch_size,
        )

    async def stop(self) -> None:
        """Stop the loop and wait for its task to exit."""
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Retry scheduler stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.error("Unexpected error in scheduler run", exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    async def run_now(self) -> RunSummary:
        """Manual trigger; the same code path as a scheduled run."""
        logger.info("Manual retry sweep requested")
        return await self.run_once()

    async def run_once(self) -> RunSummary:
        """Execute one deterministic run of all three sweeps.

        Returns:
            RunSummary; skipped=True when another run was in progress.
        """
        now = utc_now()
        if self.stats.is_running:
            self.stats.skipped_runs += 1
            logger.info("Scheduler run skipped; previous run still in progress")
            return RunSummary(started_at=now, finished_at=now, skipped=True)

        self.stats.is_running = True
        self.stats.total_runs += 1
        self.stats.last_run = now
        summary = RunSummary(started_at=now)
        seen: set[str] = set()
        timer = StageTimer("retry_sweep")

        try:
            with timer:
                await self._poll_sweep(summary, seen)
                await self._stale_sweep(summary, seen)
                await self._retry_sweep(summary, seen)
        except Exception as exc:
            self.stats.failed_runs += 1
            self.stats.last_error = {"message": str(exc), "timestamp": to_iso(utc_now())}
            logger.error("Scheduler run failed", exc_info=True)
        else:
            self.stats.successful_runs += 1
        finally:
            summary.finished_at = utc_now()
            summary.duration_ms = timer.duration_ms
            self.stats.last_summary = summary
            self.stats.is_running = False
            log_scheduler_run(summary.to_dict())

        return summary

    def _is_job_based(self, recording: Recording) -> bool:
        try:
            engine = self.orchestrator.registry.get(recording.provider_name)
        except ProviderError:
            return False
        return engine.completion_mode in JOB_BASED_MODES

    async def _poll_sweep(self, summary: RunSummary, seen: set[str]) -> None:
        processing = await self.store.list_by_status(
            [TranscriptionStatus.PROCESSING], limit=self.batch_size
        )
        for recording in processing:
            if recording.id in seen or recording.id in self.orchestrator.active_recordings:
                continue
            if not recording.job_id or not self._is_job_based(recording):
                continue
            seen.add(recording.id)
            summary.polled += 1
            try:
                updated = await self.orchestrator.poll_job(recording)
            except Exception:
                summary.errors += 1
                logger.error(
                    "Poll failed",
                    exc_info=True,
                    extra={"recording_id": recording.id, "job_id": recording.job_id},
                )
                continue
            if updated is None:
                # Still running; the stale sweep may still abandon it.
                seen.discard(recording.id)
            elif updated.transcription_status == TranscriptionStatus.COMPLETED:
                summary.poll_completed += 1

    async def _stale_sweep(self, summary: RunSummary, seen: set[str]) -> None:
        now = utc_now()
        processing = await self.store.list_by_status(
            [TranscriptionStatus.PROCESSING], limit=self.batch_size
        )
        for recording in processing:
            if recording.id in seen or recording.id in self.orchestrator.active_recordings:
                continue
            if not is_stale(recording, now, self.stale_after_seconds):
                continue
            seen.add(recording.id)
            summary.stale += 1
            error = ProviderUnavailable(
                f"No result after {self.stale_after_seconds:.0f}s",
                recording_id=recording.id,
                provider=recording.provider_name,
                job_id=recording.job_id,
                code="stale_attempt",
            )
            logger.warning(
                "Abandoning stale attempt",
                extra={"recording_id": recording.id, "provider": recording.provider_name},
            )
            try:
                await self.orchestrator.apply_outcome(recording, error)
            except Exception:
                summary.errors += 1
                logger.error(
                    "Failed to resolve stale attempt",
                    exc_info=True,
                    extra={"recording_id": recording.id},
                )

    async def _retry_sweep(self, summary: RunSummary, seen: set[str]) -> None:
        eligible = await self.store.find_retry_eligible(utc_now(), limit=self.batch_size)
        for recording in eligible:
            if recording.id in seen or recording.id in self.orchestrator.active_recordings:
                continue
            seen.add(recording.id)
            summary.retried += 1
            logger.info(
                "Retrying transcription (%d/%d)",
                recording.retry_policy.current_retry,
                recording.retry_policy.max_retries,
                extra={"recording_id": recording.id},
            )
            try:
                updated = await self.orchestrator.retry(recording)
            except Exception:
                summary.errors += 1
                logger.error(
                    "Retry failed", exc_info=True, extra={"recording_id": recording.id}
                )
                continue
            status = updated.transcription_status
            if status == TranscriptionStatus.COMPLETED:
                summary.retry_completed += 1
            elif status in (TranscriptionStatus.FAILED, TranscriptionStatus.RETRYING):
                summary.retry_failed += 1
