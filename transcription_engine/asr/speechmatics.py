"""Speechmatics ASR client implementation.

Job-polling provider on the Speechmatics Batch API v2. transcribe() submits
a diarized job and returns a PendingJob; the retry scheduler later calls
poll_status(), which fetches the json-v2 transcript once the job is done.
"""

from __future__ import annotations

import json
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
    WordTimestamp,
)
from transcription_engine.asr.normalize import build_result
from transcription_engine.utils.errors import (
    JobNotFound,
    ProviderRejected,
    ProviderUnavailable,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://asr.api.speechmatics.com/v2"
TRANSIENT_STATUS_CODES = {429, 503}


class SpeechmaticsEngine(ASREngine):
    """Speechmatics Batch API engine with speaker diarization.

    Args:
        api_key: Speechmatics API key for authentication.
        base_url: Speechmatics API base URL (default production endpoint).
        client: Optional pre-configured httpx.AsyncClient.
        timeout: Per-request timeout in seconds.
    """

    name = "speechmatics"
    completion_mode = CompletionMode.POLLING

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    async def aclose(self) -> None:
        await self._client.aclose()

    async def transcribe(
        self, audio: AudioSource, options: TranscribeOptions
    ) -> PendingJob:
        """Submit an audio file or URL for transcription.

        Returns:
            PendingJob carrying the Speechmatics job ID.

        Raises:
            ProviderError: If submission fails.
        """
        config: dict[str, Any] = {
            "type": "transcription",
            "transcription_config": {
                "language": options.language or "en",
                "diarization": "speaker",
            },
        }
        if audio.url and not audio.path:
            config["fetch_data"] = {"url": audio.url}

        url = f"{self._base_url}/jobs/"
        data = {"config": json.dumps(config)}

        try:
            if audio.path:
                with open(audio.path, "rb") as audio_file:
                    files = {
                        "data_file": (
                            audio.filename or "audio",
                            audio_file,
                            "application/octet-stream",
                        ),
                    }
                    response = await self._client.post(
                        url, headers=self._headers(), files=files, data=data
                    )
            else:
                audio.require_url(self.name)
                # The jobs endpoint only accepts multipart bodies.
                response = await self._client.post(
                    url,
                    headers=self._headers(),
                    files={"config": (None, data["config"])},
                )
        except OSError as exc:
            raise ProviderRejected(
                f"Cannot read audio file: {exc}",
                provider=self.name,
                code="audio_unreadable",
            ) from exc
        except httpx.HTTPError as exc:
            raise transport_error(exc, self.name, "job submission") from exc

        raise_for_provider_status(
            response, self.name, "job submission", expected=(200, 201)
        )

        job_id = response.json().get("id")
        if not job_id:
            raise ProviderUnavailable(
                "No job ID in submission response", provider=self.name
            )

        logger.info(
            "Submitted Speechmatics job %s",
            job_id,
            extra={"provider": self.name, "job_id": job_id},
        )
        return PendingJob(job_id=job_id, provider=self.name)

    async def poll_status(self, job_id: str) -> TranscriptionResult | StillProcessing:
        """Check job status; fetch and convert the transcript once done.

        Transient poll failures report StillProcessing so the next sweep
        tries again instead of abandoning a running remote job.

        Raises:
            ProviderRejected: If the job was rejected.
            JobNotFound: If the job was deleted or is unknown.
        """
        url = f"{self._base_url}/jobs/{job_id}"
        try:
            response = await self._client.get(url, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning(
                "Speechmatics poll for job %s failed: %s",
                job_id,
                exc,
                extra={"provider": self.name, "job_id": job_id},
            )
            return StillProcessing(job_id=job_id, provider=self.name, remote_status="unreachable")

        if response.status_code in TRANSIENT_STATUS_CODES:
            return StillProcessing(job_id=job_id, provider=self.name, remote_status="throttled")

        raise_for_provider_status(response, self.name, "status poll", job_id=job_id)

        status = response.json().get("job", {}).get("status", "")

        if status == "done":
            logger.info("Speechmatics job %s completed", job_id)
            raw_response = await self._fetch_transcript(job_id)
            return self._convert_response(raw_response, job_id)

        if status == "rejected":
            raise ProviderRejected(
                f"Job {job_id} was rejected", provider=self.name, job_id=job_id
            )
        if status == "deleted":
            raise JobNotFound(
                f"Job {job_id} was deleted", provider=self.name, job_id=job_id
            )

        return StillProcessing(job_id=job_id, provider=self.name, remote_status=status or "unknown")

    async def _fetch_transcript(self, job_id: str) -> dict:
        """Fetch the completed transcript in json-v2 format."""
        url = f"{self._base_url}/jobs/{job_id}/transcript"
        params = {"format": "json-v2"}

        try:
            response = await self._client.get(url, headers=self._headers(), params=params)
        except httpx.HTTPError as exc:
            raise transport_error(exc, self.name, "transcript fetch", job_id) from exc

        raise_for_provider_status(response, self.name, "transcript fetch", job_id=job_id)
        return response.json()

    def _convert_response(self, raw_response: dict, job_id: str) -> TranscriptionResult:
        """Convert a json-v2 transcript into a normalized result.

        Groups consecutive words by speaker into Utterances. Speaker IDs
        (S1, S2, ...) become 'Speaker 1', 'Speaker 2' in order of first
        appearance. Punctuation attaches to the preceding word.
        """
        speaker_map: dict[str, str] = {}
        utterances: list[Utterance] = []
        words: list[WordTimestamp] = []
        confidences: list[float] = []

        for result in raw_response.get("results", []):
            alternatives = result.get("alternatives", [])
            if not alternatives:
                continue
            alt = alternatives[0]
            content = alt.get("content", "")

            if result.get("type") == "punctuation":
                if utterances and content:
                    utterances[-1].text += content
                    words[-1].text += content
                continue
            if result.get("type") != "word":
                continue

            raw_speaker = alt.get("speaker", "UU")
            if raw_speaker not in speaker_map:
                speaker_map[raw_speaker] = f"Speaker {len(speaker_map) + 1}"
            speaker = speaker_map[raw_speaker]

            start = float(result.get("start_time", 0.0))
            end = float(result.get("end_time", 0.0))
            words.append(WordTimestamp(text=content, start=start, end=end))
            if alt.get("confidence") is not None:
                confidences.append(float(alt["confidence"]))

            if utterances and utterances[-1].speaker == speaker:
                utterances[-1].text += f" {content}"
                utterances[-1].end = end
            else:
                utterances.append(
                    Utterance(text=content, start=start, end=end, speaker=speaker)
                )

        metadata = raw_response.get("metadata", {})
        job = raw_response.get("job", {})
        confidence = (
            round(sum(confidences) / len(confidences), 4) if confidences else None
        )

        return build_result(
            self.name,
            utterances,
            model=metadata.get("transcription_config", {}).get("operating_point", "standard"),
            language=metadata.get("transcription_config", {}).get("language", "en"),
            job_id=job_id,
            confidence=confidence,
            duration_seconds=job.get("duration"),
            word_timestamps=words,
            raw_response=raw_response,
        )
