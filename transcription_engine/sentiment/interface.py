"""Abstract sentiment analysis interface.

Analyzers score transcript text and return a coarse Sentiment. They are
used to fill metadata.sentiment when the provider did not supply one.
"""

from abc import ABC, abstractmethod

from transcription_engine.asr.interface import Sentiment


class SentimentAnalyzer(ABC):
    """Abstract base class for sentiment analyzer implementations.

    Subclasses must implement the provider_name property and analyze().
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier (e.g., 'google-cloud-nl')."""

    @abstractmethod
    async def analyze(self, lines: list[str]) -> Sentiment:
        """Score transcript lines.

        Args:
            lines: Transcript lines, one per speaker turn.

        Returns:
            Sentiment with the mean score across lines and its label.

        Raises:
            SentimentAnalysisError: If the provider call fails.
        """
