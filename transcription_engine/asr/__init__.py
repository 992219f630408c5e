"""Speech-to-text provider adapters."""

from transcription_engine.asr.registry import ProviderRegistry, get_asr_engine

__all__ = ["ProviderRegistry", "get_asr_engine"]
