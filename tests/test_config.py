"""Tests for configuration loading."""

import pytest

from sdnredirect import config
from sdnredirect.config import (
    DEFAULT_BACKEND_URL,
    RedirectConfig,
    get_config,
    set_config,
)
from sdnredirect.redirection.backends import InMemoryBackend, get_backend

ENV_VARS = [
    "SDNREDIRECT_BACKEND",
    "SDNREDIRECT_TOKEN",
    "SDNREDIRECT_TIMEOUT",
    "SDNREDIRECT_VERIFY_TLS",
    "SDNREDIRECT_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.setattr(config, "ENV_LOCATIONS", [])
    for name in ENV_VARS:
        # setenv first so monkeypatch restores the original state afterwards,
        # including variables a .env file adds
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_defaults() -> None:
    loaded = RedirectConfig.from_env()

    assert loaded.backend_url == DEFAULT_BACKEND_URL
    assert loaded.auth_token == ""
    assert loaded.timeout == 30.0
    assert loaded.verify_tls is True
    assert loaded.log_level == "INFO"


def test_from_env(monkeypatch) -> None:
    monkeypatch.setenv("SDNREDIRECT_BACKEND", "memory://")
    monkeypatch.setenv("SDNREDIRECT_TOKEN", "keystone-token")
    monkeypatch.setenv("SDNREDIRECT_TIMEOUT", "5")
    monkeypatch.setenv("SDNREDIRECT_VERIFY_TLS", "false")
    monkeypatch.setenv("SDNREDIRECT_LOG_LEVEL", "debug")

    loaded = RedirectConfig.from_env()

    assert loaded.backend_url == "memory://"
    assert loaded.auth_token == "keystone-token"
    assert loaded.timeout == 5.0
    assert loaded.verify_tls is False
    assert loaded.log_level == "DEBUG"


def test_env_file_is_loaded(monkeypatch, tmp_path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("SDNREDIRECT_TOKEN=from-file\nSDNREDIRECT_VERIFY_TLS=yes\n")
    monkeypatch.setattr(config, "ENV_LOCATIONS", [tmp_path / "missing.env", env_file])

    assert config.load_env_files() == env_file
    loaded = RedirectConfig.from_env()

    assert loaded.auth_token == "from-file"
    assert loaded.verify_tls is True


def test_environment_wins_over_env_file(monkeypatch, tmp_path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("SDNREDIRECT_TOKEN=from-file\n")
    monkeypatch.setattr(config, "ENV_LOCATIONS", [env_file])
    monkeypatch.setenv("SDNREDIRECT_TOKEN", "from-env")

    assert RedirectConfig.from_env().auth_token == "from-env"


def test_get_config_is_cached_until_reset(monkeypatch) -> None:
    monkeypatch.setenv("SDNREDIRECT_BACKEND", "memory://")

    first = get_config()
    assert get_config() is first
    assert first.backend_url == "memory://"

    set_config(RedirectConfig(backend_url="sqlite:///tmp/x.db"))
    assert get_config().backend_url == "sqlite:///tmp/x.db"


def test_get_backend_uses_config_url() -> None:
    backend = get_backend(config=RedirectConfig(backend_url="memory://"))

    assert isinstance(backend, InMemoryBackend)


def test_get_backend_rejects_unknown_scheme() -> None:
    with pytest.raises(ValueError, match="Unsupported backend"):
        get_backend("ftp://controller")
