from __future__ import annotations
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..errors import ConfigurationError
from .azure import AzureOpenAIProvider
from .gemini import GeminiProvider
from .ollama import OllamaProvider
from .openai import OpenAIProvider
from .types import Provider, ProviderHandle


class ProviderRegistry:
    """Maps ``<vendor>/<model>`` identifiers to provider handles.

    The vendor table and aliases are frozen at construction; ``resolve`` is a
    pure lookup and safe to call from concurrent flows. Unknown vendors fail
    instead of falling back to another backend.
    """

    def __init__(self, providers: Iterable[Provider], aliases: Optional[Mapping[str, str]] = None) -> None:
        table: Dict[str, Provider] = {}
        for p in providers:
            if p.vendor in table:
                raise ConfigurationError(f"Duplicate provider for vendor '{p.vendor}'")
            table[p.vendor] = p
        self._providers: Mapping[str, Provider] = MappingProxyType(table)
        self._aliases: Mapping[str, str] = MappingProxyType(dict(aliases or {}))

    @classmethod
    def from_settings(cls, settings: Dict[str, Any]) -> "ProviderRegistry":
        timeout = float(settings.get("ATTEMPT_TIMEOUT") or 60.0)
        return cls(
            [
                GeminiProvider(settings.get("GOOGLE_API_KEY"), timeout=timeout),
                OpenAIProvider(settings.get("OPENAI_API_KEY"), timeout=timeout),
                AzureOpenAIProvider(
                    settings.get("AZURE_OPENAI_ENDPOINT"),
                    settings.get("AZURE_OPENAI_API_KEY"),
                    api_version=settings.get("AZURE_OPENAI_API_VERSION") or "2024-02-01",
                    timeout=timeout,
                ),
                OllamaProvider(settings.get("OLLAMA_HOST") or "http://localhost:11434", timeout=timeout),
            ],
            aliases=settings.get("MODEL_ALIASES") or {},
        )

    @property
    def vendors(self) -> List[str]:
        return sorted(self._providers)

    @property
    def enabled_vendors(self) -> List[str]:
        return sorted(v for v, p in self._providers.items() if p.enabled)

    def get(self, vendor: str) -> Provider:
        try:
            return self._providers[vendor]
        except KeyError:
            raise ConfigurationError(
                f"Unknown provider '{vendor}' (known: {', '.join(self.vendors) or 'none'})"
            ) from None

    def resolve(self, model_id: str) -> ProviderHandle:
        if not isinstance(model_id, str) or not model_id.strip():
            raise ConfigurationError("Model identifier must be a non-empty string")
        full = self._aliases.get(model_id, model_id)
        vendor, sep, model = full.partition("/")
        if not sep or not vendor or not model:
            raise ConfigurationError(f"Model identifier '{model_id}' is not of the form '<vendor>/<model>'")
        return ProviderHandle(model_id=full, model=model, provider=self.get(vendor))
