from .errors import ProviderAuthError, ProviderError, ProviderRequestError, TransientProviderError
from .registry import ProviderRegistry
from .types import GenerationParams, Provider, ProviderHandle, ProviderRequest, ProviderResponse

__all__ = [
    "GenerationParams",
    "Provider",
    "ProviderAuthError",
    "ProviderError",
    "ProviderHandle",
    "ProviderRegistry",
    "ProviderRequest",
    "ProviderRequestError",
    "ProviderResponse",
    "TransientProviderError",
]
