"""Chat model provider registry.

Providers are registered under a tag with the model-id prefixes they serve.
Resolution picks the longest matching prefix, checks the credential, then
calls the provider's constructor, so adding a provider never touches the
dispatch code.
"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from agent_runtime.config import LLMConfig
from agent_runtime.exceptions import ProviderCredentialMissing, ProviderUnsupported

logger = structlog.get_logger()

ModelBuilder = Callable[[str, str], Any]
CredentialLookup = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class ProviderDefinition:
    """A chat model provider and how to construct its models."""

    tag: str
    prefixes: tuple[str, ...]
    credential: str
    build: Optional[ModelBuilder]
    unsupported_reason: str = "provider is not supported yet"


def _build_anthropic(model_id: str, api_key: str) -> Any:
    from langchain_anthropic import ChatAnthropic

    return ChatAnthropic(model=model_id, api_key=api_key)


def _build_openai(model_id: str, api_key: str) -> Any:
    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=model_id, api_key=api_key)


BUILTIN_PROVIDERS = (
    ProviderDefinition(tag="anthropic", prefixes=("claude",), credential="anthropic", build=_build_anthropic),
    ProviderDefinition(tag="openai", prefixes=("gpt",), credential="openai", build=_build_openai),
    ProviderDefinition(
        tag="gemini",
        prefixes=("gemini",),
        credential="google",
        build=None,
        unsupported_reason="Gemini support is not available yet",
    ),
)


class ProviderRegistry:
    """Maps model ids to provider constructors."""

    def __init__(
        self,
        credentials: CredentialLookup,
        *,
        allow_passthrough: bool = True,
    ) -> None:
        """Initialize provider registry.

        Args:
            credentials: Returns the API key for a credential name, or None
            allow_passthrough: Return unknown model ids unchanged instead of failing
        """
        self.credentials = credentials
        self.allow_passthrough = allow_passthrough
        self._providers: dict[str, ProviderDefinition] = {}

    def register(self, provider: ProviderDefinition) -> None:
        """Add or replace a provider."""
        self._providers[provider.tag] = provider
        logger.debug("provider_registered", provider=provider.tag, prefixes=list(provider.prefixes))

    def tags(self) -> list[str]:
        return list(self._providers)

    def resolve(self, model_id: str) -> Optional[ProviderDefinition]:
        """Find the provider with the longest prefix matching ``model_id``."""
        best: Optional[ProviderDefinition] = None
        best_length = -1
        for provider in self._providers.values():
            for prefix in provider.prefixes:
                if model_id.startswith(prefix) and len(prefix) > best_length:
                    best, best_length = provider, len(prefix)
        return best

    def create(self, model_id: str) -> Any:
        """Build a model handle for ``model_id``.

        Returns:
            The provider's model object, or the id itself when no provider
            matches and passthrough is allowed.

        Raises:
            ProviderUnsupported: If the matching provider cannot build models,
                or nothing matches and passthrough is disabled.
            ProviderCredentialMissing: If the provider's API key is not set.
        """
        provider = self.resolve(model_id)
        if provider is None:
            if not self.allow_passthrough:
                raise ProviderUnsupported(model_id)
            logger.info("model_passthrough", model=model_id)
            return model_id

        if provider.build is None:
            raise ProviderUnsupported(model_id, provider.unsupported_reason)

        api_key = self.credentials(provider.credential)
        logger.info("model_resolved", model=model_id, provider=provider.tag, has_api_key=bool(api_key))
        if not api_key:
            raise ProviderCredentialMissing(provider.tag)

        return provider.build(model_id, api_key)


def default_registry(config: LLMConfig) -> ProviderRegistry:
    """Create a registry with the built-in providers and settings credentials."""
    registry = ProviderRegistry(config.get_api_key, allow_passthrough=config.allow_passthrough)
    for provider in BUILTIN_PROVIDERS:
        registry.register(provider)
    return registry
