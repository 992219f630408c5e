"""Sentiment analysis runner with provider registry.

Best-effort sentiment enrichment: failures are logged and return None rather
than raising, so a completed transcript is never held back by sentiment.
"""

from __future__ import annotations

import logging

from transcription_engine.asr.interface import Sentiment, TranscriptionResult
from transcription_engine.sentiment.google_nl import GoogleNLAnalyzer
from transcription_engine.sentiment.interface import SentimentAnalyzer

logger = logging.getLogger(__name__)

SENTIMENT_ANALYZERS: dict[str, type[SentimentAnalyzer]] = {
    "google-cloud-nl": GoogleNLAnalyzer,
}


def get_sentiment_analyzer(provider: str | None) -> SentimentAnalyzer | None:
    """Instantiate the named analyzer; None when unset or unknown."""
    if not provider:
        return None
    analyzer_cls = SENTIMENT_ANALYZERS.get(provider)
    if not analyzer_cls:
        logger.warning("Unknown sentiment provider: '%s'", provider)
        return None
    try:
        return analyzer_cls()
    except Exception:
        logger.error(
            "Could not create sentiment analyzer '%s'", provider, exc_info=True
        )
        return None


async def run_sentiment_analysis(
    result: TranscriptionResult,
    analyzer: SentimentAnalyzer | None,
    recording_id: str | None = None,
) -> Sentiment | None:
    """Score a transcript if the provider did not (best-effort).

    Args:
        result: Normalized transcription result.
        analyzer: Configured analyzer, or None to skip.
        recording_id: For log correlation.

    Returns:
        Sentiment on success, None if skipped or on failure.
    """
    if analyzer is None or result.metadata.sentiment is not None:
        return None

    lines = [line for line in result.text.splitlines() if line.strip()]
    if not lines:
        return None

    try:
        return await analyzer.analyze(lines)
    except Exception:
        logger.error(
            "Sentiment analysis failed for provider '%s'",
            analyzer.provider_name,
            exc_info=True,
            extra={"recording_id": recording_id},
        )
        return None
