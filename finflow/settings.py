from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Any, Dict

from .catalog import FlowRegistry, default_registry
from .errors import ConfigurationError
from .flow import FlowRunner
from .providers.registry import ProviderRegistry
from .retry import RetryPolicy

APP_VERSION = "0.1.0"
DEFAULT_MODEL = "googleai/gemini-2.5-flash"

# Bare model names the app's model picker has historically sent
DEFAULT_ALIASES = {
    "gemini-2.5-flash": "googleai/gemini-2.5-flash",
    "gemini-3-flash-preview": "googleai/gemini-3-flash-preview",
    "gpt-5.2-chat": "azure/gpt-5.2-chat",
}

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# Load .env from repo root (dev convenience)
def load_env_file(path: Path | None = None) -> None:
    env_path = path or Path(__file__).resolve().parents[1] / ".env"
    if not env_path.exists():
        return
    for line in env_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, v = line.split("=", 1)
        k = k.strip()
        v = v.strip().strip('"').strip("'")
        if k and v and k not in os.environ:
            os.environ[k] = v


def _number(name: str, default: str, cast=float) -> Any:
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def get_settings() -> Dict[str, Any]:
    return {
        "DEFAULT_MODEL": os.getenv("FINFLOW_DEFAULT_MODEL", DEFAULT_MODEL),
        "MAX_ATTEMPTS": _number("FINFLOW_MAX_ATTEMPTS", "3", int),
        "BASE_DELAY": _number("FINFLOW_BASE_DELAY", "1.0"),
        "BACKOFF_GROWTH": _number("FINFLOW_BACKOFF_GROWTH", "2.0"),
        "ATTEMPT_TIMEOUT": _number("FINFLOW_ATTEMPT_TIMEOUT", "60.0"),
        "LOG_LEVEL": os.getenv("FINFLOW_LOG_LEVEL", "INFO"),
        "GOOGLE_API_KEY": os.getenv("GOOGLE_API_KEY"),
        "OPENAI_API_KEY": os.getenv("OPENAI_API_KEY"),
        "AZURE_OPENAI_ENDPOINT": os.getenv("AZURE_OPENAI_ENDPOINT"),
        "AZURE_OPENAI_API_KEY": os.getenv("AZURE_OPENAI_API_KEY"),
        "AZURE_OPENAI_API_VERSION": os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-01"),
        "OLLAMA_HOST": os.getenv("OLLAMA_HOST", "http://localhost:11434"),
        "MODEL_ALIASES": dict(DEFAULT_ALIASES),
    }


def retry_policy_from_settings(settings: Dict[str, Any]) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings["MAX_ATTEMPTS"],
        base_delay=settings["BASE_DELAY"],
        growth=settings["BACKOFF_GROWTH"],
        attempt_timeout=settings["ATTEMPT_TIMEOUT"],
    )


def configure_logging(level: str | int = "INFO") -> None:
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_router(settings: Dict[str, Any] | None = None) -> ProviderRegistry:
    return ProviderRegistry.from_settings(settings or get_settings())


def build_runner(settings: Dict[str, Any] | None = None, flows: FlowRegistry | None = None) -> FlowRunner:
    s = settings or get_settings()
    return FlowRunner(
        build_router(s),
        retry_policy_from_settings(s),
        flows=flows if flows is not None else default_registry(),
        default_model=s["DEFAULT_MODEL"],
    )
