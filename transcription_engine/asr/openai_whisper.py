"""OpenAI audio transcription client.

Synchronous provider: the transcription endpoint returns the final result in
the response. Uses the diarizing model first and falls back to whisper-1
when that model is not available to the account.
"""

from __future__ import annotations

import logging
import os
import time

import httpx

from transcription_engine.asr.http_errors import (
    raise_for_provider_status,
    transport_error,
)
from transcription_engine.asr.interface import (
    ASREngine,
    AudioSource,
    CompletionMode,
    TranscribeOptions,
    TranscriptionResult,
    Utterance,
)
from transcription_engine.asr.normalize import build_result
from transcription_engine.utils.errors import ProviderRejected

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DIARIZE_MODEL = "gpt-4o-transcribe-diarize"
FALLBACK_MODEL = "whisper-1"
MAX_FILE_SIZE_BYTES = 25 * 1024 * 1024


class OpenAIEngine(ASREngine):
    """OpenAI transcription engine with speaker diarization.

    Args:
        api_key: OpenAI API key.
        base_url: API base URL.
        client: Optional pre-configured httpx.AsyncClient.
        timeout: Request timeout in seconds (default 180).
    """

    name = "openai"
    completion_mode = CompletionMode.SYNCHRONOUS
    accepts_url = False

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 180.0,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def transcribe(
        self, audio: AudioSource, options: TranscribeOptions
    ) -> TranscriptionResult:
        """Upload the local audio file and return the normalized transcript.

        Raises:
            ProviderRejected: If the file is missing or over 25 MB.
            ProviderError: On API failures.
        """
        path = audio.require_path(self.name)
        try:
            size = os.path.getsize(path)
        except OSError as exc:
            raise ProviderRejected(
                f"Audio file not found: {path}",
                provider=self.name,
                code="audio_unreadable",
            ) from exc

        if size > MAX_FILE_SIZE_BYTES:
            raise ProviderRejected(
                f"Audio file too large: {size / 1024 / 1024:.2f} MB. "
                f"Maximum size: {MAX_FILE_SIZE_BYTES / 1024 / 1024:.2f} MB",
                provider=self.name,
                code="file_too_large",
            )

        started = time.monotonic()
        response = await self._request(path, audio.filename, DIARIZE_MODEL, options)

        model = DIARIZE_MODEL
        if self._is_model_missing(response):
            logger.info(
                "Model %s not available, falling back to %s",
                DIARIZE_MODEL,
                FALLBACK_MODEL,
                extra={"provider": self.name, "recording_id": options.recording_id},
            )
            model = FALLBACK_MODEL
            response = await self._request(path, audio.filename, FALLBACK_MODEL, options)

        raise_for_provider_status(response, self.name, "transcription")
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return self._convert_response(response.json(), model, options, elapsed_ms)

    async def _request(
        self,
        path: str,
        filename: str | None,
        model: str,
        options: TranscribeOptions,
    ) -> httpx.Response:
        data = {"model": model}
        if model == DIARIZE_MODEL:
            data["response_format"] = "diarized_json"
            data["chunking_strategy"] = "auto"
        else:
            data["response_format"] = "verbose_json"
        if options.language:
            data["language"] = options.language

        try:
            with open(path, "rb") as audio_file:
                files = {
                    "file": (filename or os.path.basename(path), audio_file)
                }
                return await self._client.post(
                    f"{self._base_url}/audio/transcriptions",
                    headers={"Authorization": f"Bearer {self._api_key}"},
                    data=data,
                    files=files,
                )
        except OSError as exc:
            raise ProviderRejected(
                f"Cannot read audio file: {exc}",
                provider=self.name,
                code="audio_unreadable",
            ) from exc
        except httpx.HTTPError as exc:
            raise transport_error(exc, self.name, "transcription") from exc

    @staticmethod
    def _is_model_missing(response: httpx.Response) -> bool:
        if response.status_code not in (400, 404):
            return False
        text = response.text.lower()
        return "model" in text and ("not found" in text or "does not exist" in text)

    def _convert_response(
        self,
        body: dict,
        model: str,
        options: TranscribeOptions,
        elapsed_ms: int,
    ) -> TranscriptionResult:
        utterances = [
            Utterance(
                text=segment.get("text", ""),
                start=float(segment.get("start", 0.0) or 0.0),
                end=float(segment.get("end", 0.0) or 0.0),
                speaker=segment.get("speaker") or None,
            )
            for segment in body.get("segments") or []
        ]

        return build_result(
            self.name,
            utterances,
            model=model,
            language=body.get("language") or options.language,
            duration_seconds=body.get("duration"),
            processing_time_ms=elapsed_ms,
            plain_text=body.get("text"),
            raw_response=body,
        )
