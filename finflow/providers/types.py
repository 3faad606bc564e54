from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Tuple


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class GenerationParams:
    temperature: float = 0.2
    max_output_tokens: int = 1024
    # (category, threshold) pairs; only vendors with safety filters use them
    safety_settings: Tuple[Tuple[str, str], ...] = ()

    def merged(self, overrides: Optional[Dict[str, Any]] = None) -> "GenerationParams":
        if not overrides:
            return self
        return replace(self, **overrides)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "max_output_tokens": self.max_output_tokens,
            "safety_settings": [list(s) for s in self.safety_settings],
        }


@dataclass(frozen=True)
class ProviderRequest:
    model: str  # vendor-local model name, without the namespace
    prompt: str
    params: GenerationParams = field(default_factory=GenerationParams)


@dataclass
class ProviderResponse:
    content: Any  # text, or an already structured object
    latency_ms: int
    provider_meta: Dict[str, Any]
    created_at: str = field(default_factory=_now_iso)


class Provider(Protocol):
    vendor: str

    @property
    def enabled(self) -> bool: ...

    async def generate(self, req: ProviderRequest) -> ProviderResponse: ...


@dataclass(frozen=True)
class ProviderHandle:
    """A provider bound to one model; what the router hands to the runner."""

    model_id: str
    model: str
    provider: Provider

    @property
    def vendor(self) -> str:
        return self.provider.vendor

    async def generate(self, prompt: str, params: GenerationParams) -> ProviderResponse:
        return await self.provider.generate(ProviderRequest(model=self.model, prompt=prompt, params=params))
