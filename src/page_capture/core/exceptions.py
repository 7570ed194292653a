"""Exception hierarchy for Page Capture.

All custom exceptions subclass ``PageCaptureError`` so that the orchestrator
can turn any per-resource failure into an error placeholder with a single
``except`` clause.

Hierarchy::

    PageCaptureError
    ├── FetchError               (url, status_code)
    │   └── MalformedDataUriError
    ├── PackagingError
    ├── PersistenceError         (code)
    ├── CaptureTargetUnavailableError
    └── UnknownCommandError
"""

from __future__ import annotations


class PageCaptureError(Exception):
    """Base class for all Page Capture exceptions."""


# ---------------------------------------------------------------------------
# Fetch exceptions
# ---------------------------------------------------------------------------


class FetchError(PageCaptureError):
    """Raised when a resource cannot be retrieved.

    Args:
        message: Human-readable description of the failure.
        url: The URL that was requested.
        status_code: HTTP status of the response, or ``None`` for network
            errors and data URIs.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class MalformedDataUriError(FetchError):
    """Raised when a ``data:`` URI cannot be decoded."""

    def __init__(self, url: str | None = None) -> None:
        super().__init__("Malformed data URL.", url=url)


# ---------------------------------------------------------------------------
# Packaging / persistence exceptions
# ---------------------------------------------------------------------------


class PackagingError(PageCaptureError):
    """Raised when fetched content cannot be packaged (e.g. archive generation fails)."""


class PersistenceError(PageCaptureError):
    """Raised when the download backend reports a failure.

    Args:
        message: Human-readable description of the failure.
        code: Error code reported by the backend (e.g. ``"FILE_FAILED"``).
    """

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


# ---------------------------------------------------------------------------
# Capture exceptions
# ---------------------------------------------------------------------------


class CaptureTargetUnavailableError(PageCaptureError):
    """Raised when the page agent gives no response for a capture target."""

    def __init__(self, message: str = "Page agent is not ready for this target.") -> None:
        super().__init__(message)


class UnknownCommandError(PageCaptureError):
    """Raised when a command message names no capture operation.

    Args:
        command: The unrecognised command name.
    """

    def __init__(self, command: str) -> None:
        super().__init__(f"Unknown capture command '{command}'.")
        self.command = command
