"""Resolution of a tenant's configured model provider into a chat model."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from support_agent.config import Settings
from support_agent.errors import ConfigurationError
from support_agent.models import ModelProvider, TenantConfig

# (api_key, model_name, temperature, max_output_tokens) -> chat model
ModelBuilder = Callable[[str, str, float, int], Any]


@dataclass(frozen=True, slots=True)
class ProviderEntry:
    label: str
    env_var: str
    build: ModelBuilder

    @property
    def settings_field(self) -> str:
        return self.env_var.lower()


@dataclass(frozen=True, slots=True)
class ModelHandle:
    """A ready-to-invoke chat model bound to one tenant's credential."""

    provider: ModelProvider
    model_name: str
    temperature: float
    llm: Any


def _build_openai(api_key: str, model_name: str, temperature: float, max_tokens: int) -> Any:
    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=model_name,
        api_key=api_key,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=0,
    )


def _build_anthropic(api_key: str, model_name: str, temperature: float, max_tokens: int) -> Any:
    from langchain_anthropic import ChatAnthropic

    return ChatAnthropic(
        model=model_name,
        api_key=api_key,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=0,
    )


def _build_google(api_key: str, model_name: str, temperature: float, max_tokens: int) -> Any:
    from langchain_google_genai import ChatGoogleGenerativeAI

    return ChatGoogleGenerativeAI(
        model=model_name,
        google_api_key=api_key,
        temperature=temperature,
        max_output_tokens=max_tokens,
        max_retries=0,
    )


PROVIDERS: Mapping[ModelProvider, ProviderEntry] = {
    ModelProvider.OPENAI: ProviderEntry("OpenAI", "OPENAI_API_KEY", _build_openai),
    ModelProvider.ANTHROPIC: ProviderEntry("Anthropic", "ANTHROPIC_API_KEY", _build_anthropic),
    ModelProvider.GOOGLE: ProviderEntry("Google", "GOOGLE_API_KEY", _build_google),
}


def resolve_provider_key(
    tenant: TenantConfig,
    settings: Settings,
    providers: Mapping[ModelProvider, ProviderEntry] = PROVIDERS,
) -> str:
    """Return the tenant's key for its provider, else the platform default.

    Raises:
        ConfigurationError: naming the provider and env var when neither exists.
    """
    entry = _entry_for(tenant.model_provider, providers)
    key = tenant.key_for(tenant.model_provider) or getattr(settings, entry.settings_field, None)
    if not key:
        raise ConfigurationError(
            f"{entry.label} API key not configured. Set {entry.env_var} or the "
            f"tenant's {tenant.model_provider.value}_api_key.",
            provider=tenant.model_provider.value,
            field=entry.env_var,
        )
    return key


def resolve_model(
    tenant: TenantConfig,
    settings: Settings,
    *,
    max_output_tokens: int = 1024,
    providers: Mapping[ModelProvider, ProviderEntry] = PROVIDERS,
) -> ModelHandle:
    """Build a chat model for the tenant's provider and model name.

    Nothing is cached: every call resolves the credential afresh so one
    tenant's key can never serve another tenant's request.
    """
    entry = _entry_for(tenant.model_provider, providers)
    api_key = resolve_provider_key(tenant, settings, providers)
    llm = entry.build(api_key, tenant.model_name, tenant.temperature, max_output_tokens)
    return ModelHandle(
        provider=tenant.model_provider,
        model_name=tenant.model_name,
        temperature=tenant.temperature,
        llm=llm,
    )


def available_providers(settings: Settings) -> list[ModelProvider]:
    """Providers that have a platform-level key configured."""
    return [
        provider
        for provider, entry in PROVIDERS.items()
        if getattr(settings, entry.settings_field, None)
    ]


def _entry_for(
    provider: ModelProvider, providers: Mapping[ModelProvider, ProviderEntry]
) -> ProviderEntry:
    entry = providers.get(provider)
    if entry is None:
        raise ConfigurationError(
            f"Unsupported model provider: {provider.value}", provider=provider.value
        )
    return entry
