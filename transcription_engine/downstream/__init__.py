"""Actions triggered by a completed transcription."""

from transcription_engine.downstream.notifier import (
    HttpEventNotifier,
    Notifier,
    NullNotifier,
)
from transcription_engine.downstream.trigger import DownstreamTrigger

__all__ = ["DownstreamTrigger", "HttpEventNotifier", "Notifier", "NullNotifier"]
