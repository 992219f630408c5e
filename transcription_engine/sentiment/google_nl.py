"""Google Cloud Natural Language sentiment analyzer.

Scores each transcript line with the NL API v2 and averages the document
scores into a single value in [-1.0, 1.0]. Speaker prefixes are stripped
before analysis.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from transcription_engine.asr.interface import Sentiment
from transcription_engine.asr.normalize import sentiment_label
from transcription_engine.sentiment.interface import SentimentAnalyzer
from transcription_engine.utils.errors import SentimentAnalysisError

logger = logging.getLogger(__name__)

SPEAKER_PREFIX = re.compile(r"^[^:\n]{1,40}:\s+")


class GoogleNLAnalyzer(SentimentAnalyzer):
    """Google Cloud Natural Language sentiment analyzer.

    Args:
        client: Optional pre-configured LanguageServiceClient.
            If None, creates one via google.cloud.language_v2.
    """

    @property
    def provider_name(self) -> str:
        return "google-cloud-nl"

    def __init__(self, client: Any = None) -> None:
        if client is not None:
            self._client = client
        else:
            from google.cloud import language_v2

            self._client = language_v2.LanguageServiceClient()

    async def analyze(self, lines: list[str]) -> Sentiment:
        scores = []
        for line in lines:
            text = SPEAKER_PREFIX.sub("", line).strip()
            if not text:
                continue
            scores.append(self._analyze_text(text))

        if not scores:
            return Sentiment(score=0.0, label="neutral")

        score = round(sum(scores) / len(scores), 4)
        return Sentiment(score=score, label=sentiment_label(score))

    def _analyze_text(self, text: str) -> float:
        """Call the Google NL API for one text string.

        Raises:
            SentimentAnalysisError: If the API call fails.
        """
        try:
            from google.cloud import language_v2

            document = language_v2.Document(
                content=text,
                type_=language_v2.Document.Type.PLAIN_TEXT,
            )
            response = self._client.analyze_sentiment(
                request={"document": document}
            )
        except Exception as exc:
            raise SentimentAnalysisError(
                f"Google NL API sentiment analysis failed: {exc}",
                detail=type(exc).__name__,
            ) from exc

        return float(response.document_sentiment.score)
