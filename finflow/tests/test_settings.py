import logging

import pytest

from finflow.errors import ConfigurationError
from finflow.settings import (
    DEFAULT_MODEL,
    build_runner,
    configure_logging,
    get_settings,
    load_env_file,
    retry_policy_from_settings,
)

ENV_KEYS = [
    "FINFLOW_DEFAULT_MODEL", "FINFLOW_MAX_ATTEMPTS", "FINFLOW_BASE_DELAY",
    "FINFLOW_BACKOFF_GROWTH", "FINFLOW_ATTEMPT_TIMEOUT", "FINFLOW_LOG_LEVEL",
    "GOOGLE_API_KEY", "OPENAI_API_KEY", "AZURE_OPENAI_ENDPOINT", "AZURE_OPENAI_API_KEY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so values written by load_env_file are undone too
    for k in ENV_KEYS:
        monkeypatch.setenv(k, "")
        monkeypatch.delenv(k)


def test_defaults():
    s = get_settings()
    assert s["DEFAULT_MODEL"] == DEFAULT_MODEL
    assert s["MAX_ATTEMPTS"] == 3
    assert s["LOG_LEVEL"] == "INFO"
    p = retry_policy_from_settings(s)
    assert (p.max_attempts, p.base_delay, p.growth, p.attempt_timeout) == (3, 1.0, 2.0, 60.0)


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("FINFLOW_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("FINFLOW_BASE_DELAY", "0.25")
    monkeypatch.setenv("FINFLOW_DEFAULT_MODEL", "ollama/llama3.2")
    s = get_settings()
    assert s["MAX_ATTEMPTS"] == 5
    assert s["BASE_DELAY"] == 0.25
    runner = build_runner(s)
    assert runner.default_model == "ollama/llama3.2"
    assert runner.policy.max_attempts == 5
    assert runner.router.resolve("gemini-2.5-flash").vendor == "googleai"


@pytest.mark.parametrize("key,value", [("FINFLOW_MAX_ATTEMPTS", "three"), ("FINFLOW_BASE_DELAY", "soon")])
def test_bad_numbers(monkeypatch, key, value):
    monkeypatch.setenv(key, value)
    with pytest.raises(ConfigurationError) as ei:
        get_settings()
    assert key in str(ei.value)


def test_bad_policy_values(monkeypatch):
    monkeypatch.setenv("FINFLOW_MAX_ATTEMPTS", "0")
    with pytest.raises(ConfigurationError):
        retry_policy_from_settings(get_settings())


def test_env_file_does_not_override(monkeypatch, tmp_path):
    monkeypatch.setenv("OPENAI_API_KEY", "from-shell")
    env = tmp_path / ".env"
    env.write_text('# keys\nOPENAI_API_KEY="from-file"\nGOOGLE_API_KEY=g-key\nnot a pair\n', encoding="utf-8")
    load_env_file(env)
    s = get_settings()
    assert s["OPENAI_API_KEY"] == "from-shell"
    assert s["GOOGLE_API_KEY"] == "g-key"
    assert "googleai" in build_runner(s).router.enabled_vendors


def test_missing_env_file_is_ignored(tmp_path):
    load_env_file(tmp_path / "absent.env")


def test_configure_logging_quiets_httpx():
    configure_logging("debug")
    assert logging.getLogger("httpx").level == logging.WARNING
