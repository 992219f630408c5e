"""Provider-neutral transcript normalization.

Every provider maps its payload into Utterances and calls build_result().
The speaker-line policy lives here so it is identical for every provider:
consecutive utterances from one speaker share a line, and a speaker change
starts a new line prefixed with the speaker label.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from transcription_engine.asr.interface import (
    Sentiment,
    SpeakerLabel,
    TranscriptionMetadata,
    TranscriptionResult,
    Utterance,
    WordTimestamp,
)
from transcription_engine.utils.clock import utc_now
from transcription_engine.utils.errors import ProviderRejected

POSITIVE_THRESHOLD = 0.25
NEGATIVE_THRESHOLD = -0.25


def join_speaker_lines(utterances: Iterable[Utterance]) -> str:
    """Join utterances into speaker-prefixed lines.

    Utterances without a speaker continue the current line. A transcript
    with no speaker labels at all becomes a single line.

    Args:
        utterances: Utterances in playback order.

    Returns:
        Newline-separated transcript text. Empty string if no utterance
        carries text.
    """
    lines: list[str] = []
    current_speaker: str | None = None

    for utterance in utterances:
        text = (utterance.text or "").strip()
        if not text:
            continue

        if utterance.speaker and utterance.speaker != current_speaker:
            current_speaker = utterance.speaker
            lines.append(f"{utterance.speaker}: {text}")
        elif lines:
            lines[-1] += f" {text}"
        else:
            lines.append(text)

    return "\n".join(lines)


def sentiment_label(score: float) -> str:
    """Map a sentiment score in [-1, 1] to a coarse label."""
    if score >= POSITIVE_THRESHOLD:
        return "positive"
    if score <= NEGATIVE_THRESHOLD:
        return "negative"
    return "neutral"


def _average(values: list[float]) -> float | None:
    if not values:
        return None
    return round(sum(values) / len(values), 4)


def build_result(
    provider: str,
    utterances: list[Utterance],
    *,
    model: str | None = None,
    language: str | None = None,
    job_id: str | None = None,
    confidence: float | None = None,
    sentiment: Sentiment | None = None,
    duration_seconds: float | None = None,
    processing_time_ms: int | None = None,
    word_timestamps: list[WordTimestamp] | None = None,
    plain_text: str | None = None,
    raw_response: dict[str, Any] | None = None,
) -> TranscriptionResult:
    """Build a normalized TranscriptionResult from provider utterances.

    Args:
        provider: Registry name of the provider.
        utterances: Speaker-attributed spans in playback order.
        model: Provider model identifier.
        language: Transcript language.
        job_id: Remote job id for job-based providers.
        confidence: Overall confidence; averaged from utterances if omitted.
        sentiment: Provider-supplied sentiment, if any.
        duration_seconds: Audio duration reported by the provider.
        processing_time_ms: Provider-side processing time.
        word_timestamps: Word-level timestamps; utterance spans are used
            when omitted.
        plain_text: Fallback text when the provider returned no utterances.
        raw_response: Original provider payload.

    Returns:
        TranscriptionResult with status "completed".

    Raises:
        ProviderRejected: If the normalized transcript is empty.
    """
    text = join_speaker_lines(utterances)
    if not text and plain_text:
        text = plain_text.strip()

    if not text:
        raise ProviderRejected(
            "Provider returned an empty transcript",
            provider=provider,
            code="empty_transcript",
            job_id=job_id,
        )

    speaker_labels = [
        SpeakerLabel(
            speaker=u.speaker,
            start_time=u.start,
            end_time=u.end,
            text=u.text.strip(),
        )
        for u in utterances
        if u.speaker and u.text and u.text.strip()
    ]

    if word_timestamps is None:
        word_timestamps = [
            WordTimestamp(text=u.text.strip(), start=u.start, end=u.end)
            for u in utterances
            if u.text and u.text.strip()
        ]

    if confidence is None:
        confidence = _average(
            [u.confidence for u in utterances if u.confidence is not None]
        )

    metadata = TranscriptionMetadata(
        provider=provider,
        model=model,
        language=language,
        job_id=job_id,
        confidence=confidence,
        sentiment=sentiment,
        speaker_labels=speaker_labels,
        timestamps=word_timestamps,
        processed_at=utc_now(),
        processing_time_ms=processing_time_ms,
    )

    return TranscriptionResult(
        text=text,
        metadata=metadata,
        duration_seconds=duration_seconds,
        raw_response=raw_response or {},
    )
