"""
SDN controller backends for traffic redirection.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

from pathlib import Path

from sdnredirect.config import RedirectConfig
from sdnredirect.redirection.backends.base import RedirectionBackend
from sdnredirect.redirection.backends.memory import InMemoryBackend
from sdnredirect.redirection.backends.sfc import NeutronSFCBackend
from sdnredirect.redirection.backends.sqlite import SQLiteBackend

__all__ = [
    "RedirectionBackend",
    "InMemoryBackend",
    "SQLiteBackend",
    "NeutronSFCBackend",
    "get_backend",
]


def get_backend(url: str | None = None, config: RedirectConfig | None = None) -> RedirectionBackend:
    """Get a backend instance based on a backend URL.

    Args:
        url: Backend URL (defaults to config.backend_url)
            - "memory://" -> in-process controller
            - "sqlite:///path.db" -> SQLite lab controller at path
            - "sqlite" -> SQLite at the default location
            - "http(s)://neutron:9696" -> Neutron networking-sfc
        config: Settings for token, timeout and TLS verification

    Returns:
        RedirectionBackend instance (not yet connected)
    """
    config = config or RedirectConfig()
    url = url or config.backend_url

    if url.startswith("memory"):
        return InMemoryBackend()

    if url.startswith("sqlite"):
        if ":///" in url:
            db_path = url.split("///", 1)[1]
        else:
            db_path = str(Path.home() / ".config" / "sdnredirect" / "redirect.db")
        return SQLiteBackend(db_path)

    if url.startswith(("http://", "https://")):
        return NeutronSFCBackend(
            url,
            auth_token=config.auth_token or None,
            timeout=config.timeout,
            verify_tls=config.verify_tls,
        )

    raise ValueError(f"Unsupported backend type: {url}")
