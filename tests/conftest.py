"""Shared pytest fixtures for Page Capture tests.

Fixture summary
---------------
backend        : LocalDownloadBackend writing below ``tmp_path``.
coordinator    : DownloadCoordinator subscribed to ``backend``.
transport      : Transport over a real httpx client; mock it with respx.
capturer       : Capturer wired to ``transport`` and ``coordinator``.
settings_for   : Factory for CaptureSettings of a session.

No test reaches the network: every HTTP exchange is mocked with ``respx``,
and downloads land in the per-test temporary directory.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest
import pytest_asyncio

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set before application modules are imported so that get_settings() picks
# them up when api.main builds its module-level app.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "PAGE_CAPTURE_LOG_LEVEL": "WARNING",
    "PAGE_CAPTURE_USER_AGENT": "PageCapture-Test/1.0",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)

from page_capture.capturer.downloads import DownloadCoordinator  # noqa: E402
from page_capture.capturer.http_fetcher import Transport, build_client  # noqa: E402
from page_capture.capturer.local_downloads import LocalDownloadBackend  # noqa: E402
from page_capture.capturer.models import CaptureSettings  # noqa: E402
from page_capture.capturer.orchestrator import Capturer  # noqa: E402

#: Session ID used by tests that drive the per-frame operations directly.
TEST_SESSION_ID = "20230101000000000"


@pytest.fixture
def backend(tmp_path: Path) -> LocalDownloadBackend:
    return LocalDownloadBackend(tmp_path)


@pytest.fixture
def coordinator(backend: LocalDownloadBackend) -> DownloadCoordinator:
    return DownloadCoordinator(backend)


@pytest_asyncio.fixture
async def transport() -> AsyncGenerator[Transport, None]:
    """Transport over a fresh client, closed after the test."""
    client = build_client(user_agent="PageCapture-Test/1.0")
    transport = Transport(client)
    yield transport
    await transport.aclose()


@pytest_asyncio.fixture
async def capturer(
    transport: Transport,
    coordinator: DownloadCoordinator,
) -> AsyncGenerator[Capturer, None]:
    yield Capturer(transport=transport, coordinator=coordinator)


@pytest.fixture
def settings_for() -> Callable[..., CaptureSettings]:
    """Return a factory for frame settings of :data:`TEST_SESSION_ID`."""

    def _factory(**overrides: object) -> CaptureSettings:
        values: dict[str, object] = {"session_id": TEST_SESSION_ID}
        values.update(overrides)
        return CaptureSettings(**values)

    return _factory
