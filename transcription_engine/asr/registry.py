"""ASR engine registry with configuration-driven provider selection.

Maps provider name strings to engine classes. Use get_asr_engine() to
instantiate an engine by name with engine-specific configuration, or
ProviderRegistry.from_settings() to build every provider that has
credentials configured.
"""

from __future__ import annotations

import logging

from transcription_engine.asr.assemblyai import AssemblyAIEngine
from transcription_engine.asr.interface import ASREngine
from transcription_engine.asr.openai_whisper import OpenAIEngine
from transcription_engine.asr.salad import SaladEngine
from transcription_engine.asr.speechmatics import SpeechmaticsEngine
from transcription_engine.config import EngineSettings
from transcription_engine.utils.errors import UnsupportedProviderError

logger = logging.getLogger(__name__)

ASR_ENGINES: dict[str, type[ASREngine]] = {
    "assemblyai": AssemblyAIEngine,
    "openai": OpenAIEngine,
    "speechmatics": SpeechmaticsEngine,
    "salad": SaladEngine,
}

# Lower runs first when falling back across providers.
PROVIDER_PRIORITY: dict[str, int] = {
    "assemblyai": 1,
    "openai": 2,
    "speechmatics": 3,
    "salad": 4,
}


def get_asr_engine(provider: str, **kwargs: object) -> ASREngine:
    """Create an ASR engine instance by provider name.

    Args:
        provider: Provider name (e.g., "speechmatics").
        **kwargs: Engine-specific configuration passed to the constructor.

    Returns:
        An initialized ASREngine instance.

    Raises:
        UnsupportedProviderError: If the provider name is not registered.
    """
    engine_cls = ASR_ENGINES.get(provider)
    if not engine_cls:
        available = ", ".join(sorted(ASR_ENGINES.keys()))
        raise UnsupportedProviderError(
            f"Unknown ASR provider: '{provider}'. Available: {available}",
            provider=provider,
        )
    return engine_cls(**kwargs)


class ProviderRegistry:
    """Configured provider instances, addressable by name."""

    def __init__(self, engines: dict[str, ASREngine] | None = None) -> None:
        self._engines: dict[str, ASREngine] = dict(engines or {})

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> ProviderRegistry:
        """Instantiate every registered provider that has an API key."""
        engines: dict[str, ASREngine] = {}
        for name in ASR_ENGINES:
            api_key = settings.provider_keys.get(name)
            if not api_key:
                continue
            kwargs: dict[str, object] = {"api_key": api_key}
            if name == "salad" and settings.salad_api_url:
                kwargs["api_url"] = settings.salad_api_url
            engines[name] = get_asr_engine(name, **kwargs)

        logger.info("Configured transcription providers: %s", ", ".join(engines) or "none")
        return cls(engines)

    def register(self, engine: ASREngine) -> None:
        self._engines[engine.name] = engine

    def get(self, name: str | None) -> ASREngine:
        """Return the configured engine for a provider name.

        Raises:
            UnsupportedProviderError: If the provider is unknown or has no
                credentials configured.
        """
        engine = self._engines.get(name or "")
        if engine is None:
            configured = ", ".join(self.names()) or "none"
            raise UnsupportedProviderError(
                f"Provider '{name}' is not configured. Configured: {configured}",
                provider=name,
            )
        return engine

    def names(self) -> list[str]:
        return sorted(self._engines)

    def execution_order(self, preferred: str | None = None) -> list[str]:
        """Configured providers, preferred first, then by priority."""
        ordered = sorted(
            self._engines, key=lambda name: (PROVIDER_PRIORITY.get(name, 99), name)
        )
        if preferred in self._engines:
            ordered.remove(preferred)
            ordered.insert(0, preferred)
        return ordered

    async def aclose(self) -> None:
        for engine in self._engines.values():
            await engine.aclose()
