"""Transcription provider registry with configuration-driven selection.

Maps provider name strings to provider classes. Use
get_transcription_provider() to instantiate one by name.
"""

from hearing_ingest.transcription.deepgram import DeepgramProvider
from hearing_ingest.transcription.interface import TranscriptionProvider
from hearing_ingest.utils.errors import ConfigurationError

TRANSCRIPTION_PROVIDERS: dict[str, type[TranscriptionProvider]] = {
    "deepgram": DeepgramProvider,
}


def get_transcription_provider(provider: str, **kwargs: object) -> TranscriptionProvider:
    """Create a transcription provider instance by name.

    Args:
        provider: Provider name (e.g., "deepgram").
        **kwargs: Provider-specific configuration passed to the constructor.

    Returns:
        An initialized TranscriptionProvider.

    Raises:
        ConfigurationError: If the provider name is not registered.
    """
    provider_cls = TRANSCRIPTION_PROVIDERS.get(provider)
    if not provider_cls:
        available = ", ".join(sorted(TRANSCRIPTION_PROVIDERS.keys()))
        raise ConfigurationError(
            f"Unknown transcription provider: '{provider}'. Available: {available}"
        )
    return provider_cls(**kwargs)
