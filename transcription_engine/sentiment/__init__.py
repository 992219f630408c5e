"""Transcript sentiment enrichment."""

from transcription_engine.sentiment.interface import SentimentAnalyzer

__all__ = ["SentimentAnalyzer"]
