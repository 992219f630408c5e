"""Webhook reconciliation.

Matches provider callbacks to recordings by job id and feeds them into the
same transition as synchronous results and polling. Callbacks are
at-least-once: a replayed or late callback for a recording that is already
terminal is a no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from transcription_engine.asr.interface import StillProcessing
from transcription_engine.asr.registry import ProviderRegistry
from transcription_engine.orchestrator import TranscriptionOrchestrator
from transcription_engine.recording.models import Recording, TranscriptionStatus
from transcription_engine.storage.recording_store import RecordingStore
from transcription_engine.utils.errors import (
    CorrelationMismatch,
    InvalidWebhookPayload,
    ProviderError,
    ProviderRejected,
)

logger = logging.getLogger(__name__)


@dataclass
class ReconcileOutcome:
    """Result of handling one callback."""

    recording: Recording
    applied: bool
    reason: str


class WebhookReconciler:
    """Resolves provider callbacks into recording transitions.

    Args:
        store: Recording persistence.
        orchestrator: Convergence point for outcomes.
        registry: Configured provider engines.
        provider: Default provider name for callbacks.
    """

    def __init__(
        self,
        store: RecordingStore,
        orchestrator: TranscriptionOrchestrator,
        registry: ProviderRegistry,
        provider: str = "salad",
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.registry = registry
        self.provider = provider

    @staticmethod
    def correlation_id(query_id: str | None, payload: dict[str, Any]) -> str | None:
        return query_id or payload.get("id") or payload.get("job_id")

    async def handle(
        self,
        correlation_id: str | None,
        payload: dict[str, Any],
        provider: str | None = None,
    ) -> ReconcileOutcome:
        """Apply a callback to the recording it belongs to.

        Args:
            correlation_id: Job id from the callback query string, if any.
            payload: Callback body.
            provider: Provider that sent the callback.

        Returns:
            ReconcileOutcome with the current recording and whether a
            transition was written.

        Raises:
            InvalidWebhookPayload: If the job id or output is missing.
            CorrelationMismatch: If no recording matches the job id.
            UnsupportedProviderError: If the provider is not configured.
        """
        provider = provider or self.provider
        job_id = self.correlation_id(correlation_id, payload)
        if not job_id:
            raise InvalidWebhookPayload("Missing job id in webhook callback")
        if not payload.get("output"):
            raise InvalidWebhookPayload("Missing output in webhook callback")

        log_extra = {"provider": provider, "job_id": job_id}
        recording = await self.store.find_by_job(provider, job_id)
        if recording is None:
            raise CorrelationMismatch(
                f"No recording for {provider} job '{job_id}'",
                correlation_id=job_id,
            )
        log_extra["recording_id"] = recording.id

        if recording.transcription_status.is_terminal:
            logger.info("Callback for terminal recording ignored", extra=log_extra)
            return ReconcileOutcome(recording, applied=False, reason="already_terminal")
        if recording.transcription_status != TranscriptionStatus.PROCESSING:
            logger.info("Callback for idle recording ignored", extra=log_extra)
            return ReconcileOutcome(recording, applied=False, reason="not_processing")

        engine = self.registry.get(provider)
        try:
            outcome = engine.parse_webhook({**payload, "id": job_id})
        except ProviderError as exc:
            outcome = exc
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.error("Could not normalize webhook payload", exc_info=True, extra=log_extra)
            outcome = ProviderRejected(
                f"Webhook payload could not be normalized: {exc}",
                recording_id=recording.id,
                provider=provider,
                job_id=job_id,
                code="normalization_failed",
            )

        if isinstance(outcome, StillProcessing):
            return ReconcileOutcome(recording, applied=False, reason="still_processing")

        updated = await self.orchestrator.apply_outcome(recording, outcome)
        if updated is None:
            current = await self.store.get(recording.id) or recording
            logger.info("Callback lost the race to another writer", extra=log_extra)
            return ReconcileOutcome(current, applied=False, reason="concurrent_update")

        logger.info(
            "Callback applied",
            extra={**log_extra, "status": updated.transcription_status.value},
        )
        return ReconcileOutcome(updated, applied=True, reason="applied")
