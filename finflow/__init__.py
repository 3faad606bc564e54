from .catalog import FlowRegistry, default_registry
from .errors import (
    Cancelled,
    ConfigurationError,
    FlowError,
    InvalidInput,
    OutputSchemaViolation,
    ProviderUnavailable,
    UnknownFlow,
)
from .flow import FlowResult, FlowRunner, FlowSpec, FlowState, GenerationRequest
from .providers import GenerationParams, ProviderHandle, ProviderRegistry
from .retry import CancelToken, RetryPolicy, execute
from .schemas import SchemaValidator, ValidationResult, Violation, validate
from .templates import TemplateError, render

__all__ = [
    "CancelToken",
    "Cancelled",
    "ConfigurationError",
    "FlowError",
    "FlowRegistry",
    "FlowResult",
    "FlowRunner",
    "FlowSpec",
    "FlowState",
    "GenerationParams",
    "GenerationRequest",
    "InvalidInput",
    "OutputSchemaViolation",
    "ProviderHandle",
    "ProviderRegistry",
    "ProviderUnavailable",
    "RetryPolicy",
    "SchemaValidator",
    "TemplateError",
    "UnknownFlow",
    "ValidationResult",
    "Violation",
    "default_registry",
    "execute",
    "render",
    "validate",
]
