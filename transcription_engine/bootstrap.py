"""Service wiring.

Builds every collaborator from EngineSettings. Optional collaborators fall
back to local stand-ins when unconfigured: recordings live in memory without
an internal API, and events are dropped without a real-time gateway.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from transcription_engine.admin.harness import ProviderTestHarness
from transcription_engine.asr.registry import ProviderRegistry
from transcription_engine.config import EngineSettings
from transcription_engine.downstream.notifier import (
    HttpEventNotifier,
    Notifier,
    NullNotifier,
)
from transcription_engine.downstream.trigger import DownstreamTrigger
from transcription_engine.orchestrator import TranscriptionOrchestrator
from transcription_engine.scheduler.retry_scheduler import RetryScheduler
from transcription_engine.sentiment.runner import get_sentiment_analyzer
from transcription_engine.storage.internal_api import InternalApiClient
from transcription_engine.storage.object_store import ObjectStorageClient
from transcription_engine.storage.recording_store import (
    InMemoryRecordingStore,
    RecordingStore,
)
from transcription_engine.webhooks.reconciler import WebhookReconciler

logger = logging.getLogger(__name__)


@dataclass
class EngineContext:
    """Every long-lived collaborator of a running engine."""

    settings: EngineSettings
    store: RecordingStore
    registry: ProviderRegistry
    orchestrator: TranscriptionOrchestrator
    scheduler: RetryScheduler
    reconciler: WebhookReconciler
    harness: ProviderTestHarness
    notifier: Notifier
    object_store: ObjectStorageClient | None = None

    async def aclose(self) -> None:
        """Release HTTP clients held by providers, the store and the notifier."""
        await self.registry.aclose()
        await self.store.aclose()
        await self.notifier.aclose()


def build_context(
    settings: EngineSettings,
    store: RecordingStore | None = None,
    registry: ProviderRegistry | None = None,
    notifier: Notifier | None = None,
    object_store: ObjectStorageClient | None = None,
) -> EngineContext:
    """Assemble an EngineContext; explicit collaborators override settings."""
    sessions: InternalApiClient | None = None
    if store is None:
        if settings.internal_api_url:
            sessions = InternalApiClient(
                settings.internal_api_url, settings.internal_api_secret
            )
            store = sessions
        else:
            logger.warning("INTERNAL_API_URL not set; recordings are kept in memory")
            store = InMemoryRecordingStore()
    elif isinstance(store, InternalApiClient):
        sessions = store

    if registry is None:
        registry = ProviderRegistry.from_settings(settings)

    if notifier is None:
        if settings.realtime_gateway_url:
            notifier = HttpEventNotifier(
                settings.realtime_gateway_url, settings.internal_api_secret
            )
        else:
            notifier = NullNotifier()

    if object_store is None and settings.object_storage_configured:
        object_store = ObjectStorageClient(
            settings.object_storage_endpoint,
            settings.object_storage_bucket,
            settings.object_storage_access_key_id,
            settings.object_storage_secret_access_key,
        )

    orchestrator = TranscriptionOrchestrator(
        store,
        registry,
        settings,
        downstream=DownstreamTrigger(sessions, notifier),
        object_store=object_store,
        sentiment_analyzer=get_sentiment_analyzer(settings.sentiment_provider),
    )
    scheduler = RetryScheduler(
        orchestrator,
        store,
        interval_seconds=settings.retry_interval_seconds,
        batch_size=settings.retry_batch_size,
        stale_after_seconds=settings.stale_attempt_seconds,
    )
    reconciler = WebhookReconciler(store, orchestrator, registry)
    harness = ProviderTestHarness(
        registry,
        object_store=object_store,
        signed_url_ttl=settings.signed_url_ttl_seconds,
    )

    return EngineContext(
        settings=settings,
        store=store,
        registry=registry,
        orchestrator=orchestrator,
        scheduler=scheduler,
        reconciler=reconciler,
        harness=harness,
        notifier=notifier,
        object_store=object_store,
    )
