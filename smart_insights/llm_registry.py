# smart_insights/llm_registry.py
from typing import Dict, Optional, Type

from pydantic import ValidationError

from smart_insights.config_store import ConfigStore
from smart_insights.errors import InitializationError, InvalidConfigError, UnsupportedProviderError
from smart_insights.llm_providers import BUILTIN_PROVIDERS, BaseLLMProvider, ProviderSettings
from smart_insights.monitoring import logger
from smart_insights.schemas import LLMConfig


class LLMRegistry:
    """
    Resolves a stored LLM configuration into a live, initialized provider.

    Built once at startup and passed to whoever needs it. Each resolve()
    returns a brand-new provider instance; nothing is cached or shared.
    """

    def __init__(self, config_store: ConfigStore,
                 providers: Optional[Dict[str, Type[BaseLLMProvider]]] = None):
        self.config_store = config_store
        self._providers: Dict[str, Type[BaseLLMProvider]] = dict(
            BUILTIN_PROVIDERS if providers is None else providers
        )

    def register(self, kind: str, provider_cls: Type[BaseLLMProvider]) -> None:
        self._providers[kind] = provider_cls

    def list_providers(self):
        return sorted(self._providers)

    def convert(self, kind: str, config: LLMConfig, provider_cls: Type[BaseLLMProvider]) -> ProviderSettings:
        """Turn the generic stored config into the provider's typed settings."""
        if config.type != kind:
            raise InvalidConfigError(
                f"LLM configuration '{config.name}' is of type '{config.type}', not '{kind}'"
            )
        try:
            options = provider_cls.options_model.model_validate(config.options or {})
        except ValidationError as e:
            raise InvalidConfigError(
                f"invalid options in LLM configuration '{config.name}' for provider '{kind}': {e}"
            ) from e
        return ProviderSettings(name=config.name, api_key=config.api_key, model=config.model, options=options)

    def resolve(self, kind: str, config_name: str) -> BaseLLMProvider:
        config = self.config_store.load_llm_config(kind, config_name)

        provider_cls = self._providers.get(kind)
        if provider_cls is None:
            raise UnsupportedProviderError(
                f"unsupported LLM provider '{kind}' (available: {', '.join(self.list_providers())})"
            )

        settings = self.convert(kind, config, provider_cls)
        provider = provider_cls()
        try:
            provider.initialize(settings)
        except InitializationError:
            raise
        except Exception as e:
            raise InitializationError(f"failed to initialize LLM provider '{kind}': {e}") from e

        logger.info("LLM provider resolved", extra={"provider": kind, "config": config_name})
        return provider
