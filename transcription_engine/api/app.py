"""FastAPI application: provider webhooks, admin endpoints and health.

Errors never leak stack traces to callers; they are logged with exc_info
and mapped to status codes here.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse

from transcription_engine.bootstrap import EngineContext
from transcription_engine.utils.errors import (
    CorrelationMismatch,
    InvalidWebhookPayload,
    UnsupportedProviderError,
)

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, **extra},
    )


def create_app(context: EngineContext) -> FastAPI:
    """Build the HTTP surface for an engine context."""
    app = FastAPI(title="transcription-engine")
    app.state.context = context

    def require_internal_secret(
        x_internal_secret: str | None = Header(default=None),
    ) -> None:
        secret = context.settings.internal_api_secret
        if secret and x_internal_secret != secret:
            raise HTTPException(status_code=401, detail="Unauthorized")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "providers": context.registry.names(),
            "activeTranscriptions": len(context.orchestrator.active_recordings),
            "schedulerRunning": context.scheduler.is_running,
        }

    @app.post("/api/webhook/{provider}")
    async def provider_webhook(provider: str, request: Request) -> JSONResponse:
        query_id = request.query_params.get("jobId") or request.query_params.get("job_id")
        try:
            payload = await request.json()
        except ValueError:
            return _error(400, "Request body must be JSON")
        if not isinstance(payload, dict):
            return _error(400, "Request body must be a JSON object")

        try:
            outcome = await context.reconciler.handle(query_id, payload, provider=provider)
        except InvalidWebhookPayload as exc:
            return _error(400, exc.message)
        except CorrelationMismatch as exc:
            return _error(404, exc.message)
        except UnsupportedProviderError as exc:
            return _error(404, exc.message)
        except Exception:
            logger.error(
                "Webhook handling failed",
                exc_info=True,
                extra={"provider": provider, "job_id": query_id},
            )
            return _error(500, "Internal server error")

        recording = outcome.recording
        if recording.error is not None and recording.error.code == "normalization_failed":
            return _error(
                422,
                recording.error.message,
                data=recording.to_public_dict(),
                applied=outcome.applied,
            )

        return JSONResponse(
            content={
                "success": True,
                "data": recording.to_public_dict(),
                "applied": outcome.applied,
            }
        )

    @app.post(
        "/api/admin/transcription/retry",
        dependencies=[Depends(require_internal_secret)],
    )
    async def run_retry_sweep() -> JSONResponse:
        if context.scheduler.is_running:
            return _error(409, "A retry sweep is already running")
        summary = await context.scheduler.run_now()
        if summary.skipped:
            return _error(409, "A retry sweep is already running")
        return JSONResponse(content={"success": True, "data": summary.to_dict()})

    @app.get(
        "/api/admin/transcription/stats",
        dependencies=[Depends(require_internal_secret)],
    )
    async def retry_stats() -> dict[str, Any]:
        return {
            "success": True,
            "data": {
                **context.scheduler.stats.to_dict(),
                "activeTranscriptions": len(context.orchestrator.active_recordings),
                "providers": context.registry.execution_order(
                    context.settings.default_provider
                ),
            },
        }

    @app.post(
        "/api/admin/transcription/test",
        dependencies=[Depends(require_internal_secret)],
    )
    async def test_provider(
        audio: UploadFile = File(...),
        provider: str = Form(...),
        language: str | None = Form(default=None),
    ) -> JSONResponse:
        data = await audio.read()
        if not data:
            return _error(400, "Uploaded audio is empty")
        try:
            report = await context.harness.run(
                data, audio.filename or "audio", provider, language=language
            )
        except UnsupportedProviderError as exc:
            return _error(400, exc.message)
        except Exception:
            logger.error(
                "Provider test failed", exc_info=True, extra={"provider": provider}
            )
            return _error(500, "Internal server error")
        return JSONResponse(content=report.to_dict())

    return app
