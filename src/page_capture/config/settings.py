"""Application settings loaded from environment variables.

Uses Pydantic Settings v2 for validated, type-safe configuration.
Capture defaults that the page agent does not send with a request are read
from here; never call ``os.getenv`` directly elsewhere in the codebase.

Usage::

    from page_capture.config.settings import get_settings

    settings = get_settings()
    root = settings.download_root
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service-wide configuration backed by environment variables and an optional .env file.

    Every field has a default so the service starts without any environment.
    Variables use the ``PAGE_CAPTURE_`` prefix, e.g. ``PAGE_CAPTURE_LOG_LEVEL``.
    """

    model_config = SettingsConfigDict(
        env_prefix="PAGE_CAPTURE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Application behaviour
    # ------------------------------------------------------------------

    app_name: str = "Page Capture"
    """Human-readable application name shown in the OpenAPI docs."""

    debug: bool = False
    """Enable FastAPI debug mode and verbose error responses."""

    log_level: str = "INFO"
    """Logging verbosity.  One of: DEBUG, INFO, WARNING, ERROR, CRITICAL."""

    allowed_origins: list[str] = ["*"]
    """CORS origins allowed to post capture commands (page agents run in the
    browser)."""

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    user_agent: str = "PageCapture/1.0 (+https://github.com/page-capture)"
    """User-agent string sent with every resource request."""

    transport_timeout: Optional[float] = None
    """Timeout (seconds) handed to the ``httpx`` client.

    ``None`` disables it: the capture core never enforces timeouts itself, so
    a stalled resource stalls until the transport gives up.
    """

    # ------------------------------------------------------------------
    # Download backend
    # ------------------------------------------------------------------

    download_root: Path = Path("downloads")
    """Directory the local download backend writes into.  Every download
    path (including the collection folder) is resolved relative to it."""

    # ------------------------------------------------------------------
    # Capture defaults
    # ------------------------------------------------------------------

    save_as: str = "folder"
    """Default archive strategy: ``singleHtml``, ``zip``, ``maff`` or ``folder``."""

    save_in_collection: bool = True
    """Place primary files inside the managed collection folder instead of
    prompting for a location."""

    collection_path: str = "PageCapture"
    """Collection folder, relative to the download root."""

    ascii_filenames_only: bool = False
    """Percent-encode non-ASCII characters in generated filenames."""

    materialize_data_uris: bool = False
    """Save ``data:`` URIs as separate files instead of leaving them inline."""

    record_source_meta: bool = False
    """Stamp generated documents with a ``data-capture-source-*`` attribute."""

    link_unsaved_uri: bool = False
    """Keep the original URL for resources that failed to download instead of
    replacing it with an error URN."""


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings singleton.

    In tests, call ``get_settings.cache_clear()`` after patching environment
    variables.

    Returns:
        Settings: The validated settings object.
    """
    return Settings()
