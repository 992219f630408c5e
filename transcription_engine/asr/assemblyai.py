"""AssemblyAI ASR client implementation.

Job-polling provider. transcribe() uploads the audio bytes when no reachable
URL is available, then creates a transcript job with speaker labels and
sentiment analysis enabled. poll_status() converts the completed transcript,
whose offsets are in milliseconds.
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
    Sentiment,
    StillProcessing,
    TranscribeOptions,
    TranscriptionResult,
    Utterance,
    WordTimestamp,
)
from transcription_engine.asr.normalize import build_result, sentiment_label
from transcription_engine.utils.errors import ProviderRejected, ProviderUnavailable

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.assemblyai.com/v2"
DEFAULT_MODEL = "universal"
TRANSIENT_STATUS_CODES = {429, 503}
SENTIMENT_SCORES = {"POSITIVE": 1.0, "NEUTRAL": 0.0, "NEGATIVE": -1.0}


def _ms_to_seconds(value: Any) -> float:
    return round(float(value or 0) / 1000.0, 3)


class AssemblyAIEngine(ASREngine):
    """AssemblyAI engine with speaker labels and sentiment analysis.

    Args:
        api_key: AssemblyAI API key.
        base_url: API base URL.
        client: Optional pre-configured httpx.AsyncClient.
        timeout: Per-request timeout in seconds.
    """

    name = "assemblyai"
    completion_mode = CompletionMode.POLLING

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        return {"authorization": self._api_key}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def transcribe(
        self, audio: AudioSource, options: TranscribeOptions
    ) -> PendingJob:
        """Create a transcript job, uploading the audio first if needed.

        Returns:
            PendingJob carrying the AssemblyAI transcript id.

        Raises:
            ProviderError: If upload or job creation fails.
        """
        audio_url = audio.url or await self._upload(audio.require_path(self.name))

        body: dict[str, Any] = {
            "audio_url": audio_url,
            "speaker_labels": True,
            "sentiment_analysis": True,
            "language_code": options.language or "en",
        }
        if options.speaker_count:
            body["speakers_expected"] = options.speaker_count

        try:
            response = await self._client.post(
                f"{self._base_url}/transcript", headers=self._headers(), json=body
            )
        except httpx.HTTPError as exc:
            raise transport_error(exc, self.name, "job submission") from exc

        raise_for_provider_status(response, self.name, "job submission")

        job_id = response.json().get("id")
        if not job_id:
            raise ProviderUnavailable(
                "No transcript id in submission response", provider=self.name
            )

        logger.info(
            "Submitted AssemblyAI transcript %s",
            job_id,
            extra={"provider": self.name, "job_id": job_id, "recording_id": options.recording_id},
        )
        return PendingJob(job_id=job_id, provider=self.name)

    async def _upload(self, path: str) -> str:
        try:
            with open(path, "rb") as audio_file:
                payload = audio_file.read()
        except OSError as exc:
            raise ProviderRejected(
                f"Cannot read audio file: {exc}",
                provider=self.name,
                code="audio_unreadable",
            ) from exc

        try:
            response = await self._client.post(
                f"{self._base_url}/upload",
                headers={**self._headers(), "content-type": "application/octet-stream"},
                content=payload,
            )
        except httpx.HTTPError as exc:
            raise transport_error(exc, self.name, "upload") from exc

        raise_for_provider_status(response, self.name, "upload")
        upload_url = response.json().get("upload_url")
        if not upload_url:
            raise ProviderUnavailable("No upload_url in upload response", provider=self.name)
        return upload_url

    async def poll_status(self, job_id: str) -> TranscriptionResult | StillProcessing:
        """Check the transcript job and convert it once completed.

        Raises:
            ProviderRejected: If the job errored (empty_transcript when the
                audio had no speech).
            JobNotFound: If the transcript id is unknown.
        """
        try:
            response = await self._client.get(
                f"{self._base_url}/transcript/{job_id}", headers=self._headers()
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "AssemblyAI poll for job %s failed: %s",
                job_id,
                exc,
                extra={"provider": self.name, "job_id": job_id},
            )
            return StillProcessing(job_id=job_id, provider=self.name, remote_status="unreachable")

        if response.status_code in TRANSIENT_STATUS_CODES:
            return StillProcessing(job_id=job_id, provider=self.name, remote_status="throttled")

        raise_for_provider_status(response, self.name, "status poll", job_id=job_id)

        body = response.json()
        status = body.get("status", "")

        if status == "completed":
            return self._convert_response(body, job_id)

        if status == "error":
            error = body.get("error") or "unknown error"
            if "no spoken audio" in error.lower():
                raise ProviderRejected(
                    f"Transcription failed: {error}",
                    provider=self.name,
                    job_id=job_id,
                    code="empty_transcript",
                )
            raise ProviderUnavailable(
                f"Transcription failed: {error}",
                provider=self.name,
                job_id=job_id,
                code="job_failed",
            )

        return StillProcessing(job_id=job_id, provider=self.name, remote_status=status or "unknown")

    def _convert_response(self, body: dict, job_id: str) -> TranscriptionResult:
        utterances = [
            Utterance(
                text=item.get("text", ""),
                start=_ms_to_seconds(item.get("start")),
                end=_ms_to_seconds(item.get("end")),
                speaker=f"Speaker {item['speaker']}" if item.get("speaker") else None,
                confidence=item.get("confidence"),
            )
            for item in body.get("utterances") or []
        ]

        words = [
            WordTimestamp(
                text=word.get("text", ""),
                start=_ms_to_seconds(word.get("start")),
                end=_ms_to_seconds(word.get("end")),
            )
            for word in body.get("words") or []
        ]

        return build_result(
            self.name,
            utterances,
            model=body.get("speech_model") or DEFAULT_MODEL,
            language=body.get("language_code"),
            job_id=job_id,
            confidence=body.get("confidence"),
            sentiment=self._average_sentiment(body.get("sentiment_analysis_results")),
            duration_seconds=body.get("audio_duration"),
            word_timestamps=words or None,
            plain_text=body.get("text"),
            raw_response=body,
        )

    @staticmethod
    def _average_sentiment(results: list[dict] | None) -> Sentiment | None:
        """Average per-sentence sentiment into a single confidence-weighted score."""
        if not results:
            return None
        scores = [
            SENTIMENT_SCORES.get(item.get("sentiment", "NEUTRAL"), 0.0)
            * float(item.get("confidence", 1.0) or 0.0)
            for item in results
        ]
        score = round(sum(scores) / len(scores), 4)
        return Sentiment(score=score, label=sentiment_label(score))
