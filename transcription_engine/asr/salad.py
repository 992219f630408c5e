"""Salad transcription client implementation.

Webhook provider. transcribe() creates a job against a provider-reachable
audio URL and registers a callback URL; the callback body carries the job
output and is resolved through parse_webhook(). poll_status() reads the same
job record and serves as the fallback when a callback never arrives.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from transcription_engine.asr.http_errors import (
    raise_for_provider_status,
    transport_error,
)
from transcription_engine.asr.interface import (
    ASREngine,
    AudioSource,
    CompletionMode,
    PendingJob,
    StillProcessing,
    TranscribeOptions,
    TranscriptionResult,
    Utterance,
)
from transcription_engine.asr.normalize import build_result
from transcription_engine.utils.errors import ProviderUnavailable

logger = logging.getLogger(__name__)

DEFAULT_API_URL = (
    "https://api.salad.com/api/public/organizations/beyome"
    "/inference-endpoints/transcribe/jobs"
)
SUCCEEDED_STATUSES = {"succeeded", "completed", "done"}
FAILED_STATUSES = {"failed", "cancelled"}
TRANSIENT_STATUS_CODES = {429, 503}


class SaladEngine(ASREngine):
    """Salad transcription engine with webhook delivery.

    Args:
        api_key: Salad API key.
        api_url: Jobs endpoint of the transcription inference endpoint.
        client: Optional pre-configured httpx.AsyncClient.
        timeout: Per-request timeout in seconds.
    """

    name = "salad"
    completion_mode = CompletionMode.WEBHOOK
    requires_url = True

    def __init__(
        self,
        api_key: str,
        api_url: str = DEFAULT_API_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._api_url = api_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        return {"Salad-Api-Key": self._api_key}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def transcribe(
        self, audio: AudioSource, options: TranscribeOptions
    ) -> PendingJob:
        """Create a transcription job for a reachable audio URL.

        Raises:
            ProviderRejected: If no audio URL is available.
            ProviderError: If job creation fails.
        """
        audio_url = audio.require_url(self.name)
        body: dict[str, Any] = {"audio_url": audio_url}
        if options.webhook_url:
            body["webhook_url"] = options.webhook_url

        try:
            response = await self._client.post(
                self._api_url, headers=self._headers(), json=body
            )
        except httpx.HTTPError as exc:
            raise transport_error(exc, self.name, "job creation") from exc

        raise_for_provider_status(
            response, self.name, "job creation", expected=(200, 201, 202)
        )

        data = response.json()
        job_id = data.get("id") or data.get("job_id")
        if not job_id:
            raise ProviderUnavailable(
                "No job id in job creation response", provider=self.name
            )

        logger.info(
            "Created Salad job %s",
            job_id,
            extra={"provider": self.name, "job_id": job_id, "recording_id": options.recording_id},
        )
        return PendingJob(job_id=job_id, provider=self.name)

    async def poll_status(self, job_id: str) -> TranscriptionResult | StillProcessing:
        """Read the job record; used when the callback is late or lost."""
        try:
            response = await self._client.get(
                f"{self._api_url}/{job_id}", headers=self._headers()
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Salad poll for job %s failed: %s",
                job_id,
                exc,
                extra={"provider": self.name, "job_id": job_id},
            )
            return StillProcessing(job_id=job_id, provider=self.name, remote_status="unreachable")

        if response.status_code in TRANSIENT_STATUS_CODES:
            return StillProcessing(job_id=job_id, provider=self.name, remote_status="throttled")

        raise_for_provider_status(response, self.name, "status poll", job_id=job_id)
        return self._resolve(response.json(), job_id)

    def parse_webhook(self, payload: dict[str, Any]) -> TranscriptionResult | StillProcessing:
        """Resolve a callback body of the form ``{output, status?, id?, ...}``."""
        job_id = payload.get("id") or payload.get("job_id") or ""
        if "status" not in payload:
            payload = {**payload, "status": "succeeded"}
        return self._resolve(payload, job_id)

    def _resolve(self, job: dict[str, Any], job_id: str) -> TranscriptionResult | StillProcessing:
        status = (job.get("status") or "").lower()
        output = job.get("output") or {}

        if status in FAILED_STATUSES:
            raise ProviderUnavailable(
                f"Job {job_id} failed: {output.get('error') or status}",
                provider=self.name,
                job_id=job_id,
                code="job_failed",
            )

        if status not in SUCCEEDED_STATUSES:
            return StillProcessing(job_id=job_id, provider=self.name, remote_status=status or "unknown")

        if output.get("error"):
            raise ProviderUnavailable(
                f"Job {job_id} reported an error: {output['error']}",
                provider=self.name,
                job_id=job_id,
                code="job_failed",
            )

        return self._convert_output(output, job_id)

    def _convert_output(self, output: dict[str, Any], job_id: str) -> TranscriptionResult:
        segments = (
            output.get("utterances")
            or output.get("segments")
            or output.get("sentence_level_timestamps")
            or []
        )
        utterances = [
            Utterance(
                text=segment.get("text", "") or "",
                start=float(segment.get("start", segment.get("startTime", 0.0)) or 0.0),
                end=float(segment.get("end", segment.get("endTime", 0.0)) or 0.0),
                speaker=segment.get("speaker") or None,
                confidence=segment.get("confidence"),
            )
            for segment in segments
        ]

        return build_result(
            self.name,
            utterances,
            model=output.get("model") or "default",
            language=output.get("language") or "en",
            job_id=job_id or None,
            confidence=output.get("confidence"),
            duration_seconds=output.get("duration"),
            plain_text=output.get("transcript") or output.get("text"),
            raw_response=output,
        )
