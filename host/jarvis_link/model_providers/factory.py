# jarvis_link/model_providers/factory.py
"""
Factory for creating live model providers
"""

import logging

from ..config import Config
from ..errors import ConfigurationError
from .base import LiveProvider
from .gemini_live import GeminiLiveProvider
from .openai_realtime import OpenAIRealtimeProvider

logger = logging.getLogger(__name__)


class ModelProviderFactory:
    """Factory for creating model providers"""

    PROVIDERS = {
        "gemini": GeminiLiveProvider,
        "openai": OpenAIRealtimeProvider,
    }

    @staticmethod
    def create_live_provider(config: Config) -> LiveProvider:
        """Create the configured live provider; raises ConfigurationError when unusable"""
        provider_cls = ModelProviderFactory.PROVIDERS.get(config.live_provider)
        if provider_cls is None:
            raise ConfigurationError(
                f"Unknown live provider '{config.live_provider}'. "
                f"Choose one of: {', '.join(ModelProviderFactory.PROVIDERS)}"
            )

        api_key = config.provider_api_key()
        if not api_key:
            key_name = "OPENAI_API_KEY" if config.live_provider == "openai" else "GEMINI_API_KEY"
            raise ConfigurationError(f"{key_name} is not set; cannot open a {config.live_provider} session")

        logger.info(f"Using {config.live_provider} live provider")
        return provider_cls(api_key=api_key, model=config.live_model)
