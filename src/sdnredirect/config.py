"""
Configuration management for SDN Redirect.

Loads the controller backend URL and credentials from environment
variables or a .env file.
"""

import os
from pathlib import Path
from dataclasses import dataclass

from dotenv import load_dotenv

# Check common locations for .env
ENV_LOCATIONS = [
    Path.home() / ".sdnredirect" / ".env",
    Path.home() / ".config" / "sdnredirect" / ".env",
    Path.cwd() / ".env",
]

DEFAULT_BACKEND_URL = "sqlite:///" + str(Path.home() / ".config" / "sdnredirect" / "redirect.db")


def load_env_files() -> Path | None:
    """Load the first .env file found. Returns its path, if any."""
    for env_path in ENV_LOCATIONS:
        if env_path.exists():
            load_dotenv(env_path)
            return env_path
    return None


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class RedirectConfig:
    """Backend connection settings."""

    # Backend URL: memory://, sqlite:///path.db or the Neutron endpoint
    backend_url: str = DEFAULT_BACKEND_URL

    # Keystone token for the Neutron SFC backend
    auth_token: str = ""

    # HTTP timeout in seconds (REST backends only)
    timeout: float = 30.0
    verify_tls: bool = True

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "RedirectConfig":
        """Load configuration from environment variables."""
        load_env_files()
        return cls(
            backend_url=os.getenv("SDNREDIRECT_BACKEND", DEFAULT_BACKEND_URL),
            auth_token=os.getenv("SDNREDIRECT_TOKEN", ""),
            timeout=float(os.getenv("SDNREDIRECT_TIMEOUT", "30")),
            verify_tls=_env_bool("SDNREDIRECT_VERIFY_TLS", True),
            log_level=os.getenv("SDNREDIRECT_LOG_LEVEL", "INFO").upper(),
        )


# Process default used by the CLI
_config: RedirectConfig | None = None


def get_config() -> RedirectConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = RedirectConfig.from_env()
    return _config


def set_config(config: RedirectConfig | None) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
