"""Bridge between the capturer and an asynchronous download subsystem.

The download subsystem (a browser download manager, or the local backend in
:mod:`page_capture.capturer.local_downloads`) accepts a download, returns an
opaque handle immediately, and later reports state changes for that handle.
:class:`DownloadCoordinator` keeps one :class:`PendingDownload` correlation
record per handle and settles the waiting caller when the subsystem reports
completion or an error.

Settling order for a handle::

    complete → search(handle) → on_success(basename)   ┐
    error    → on_error(PersistenceError(code))         ├→ erase(handle) if auto_erase
                                                        ┘→ drop record

Auto-erase removes secondary downloads from the subsystem's visible history
so that one capture does not flood the user's download list.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import PurePath
from typing import Awaitable, Callable, Optional

from page_capture.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)

#: Conflict policy asking the subsystem to pick a free name.
CONFLICT_UNIQUIFY: str = "uniquify"

STATE_IN_PROGRESS: str = "in_progress"
STATE_COMPLETE: str = "complete"
STATE_INTERRUPTED: str = "interrupted"


# ---------------------------------------------------------------------------
# Subsystem contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DownloadRequest:
    """A download submitted to the subsystem.

    Attributes:
        source: Bytes to save.
        filename: Destination path relative to the subsystem's root,
            ``/``-separated.
        conflict_action: What to do when the destination exists.
        save_as: Ask the user for a location.
    """

    source: bytes
    filename: str
    conflict_action: str = CONFLICT_UNIQUIFY
    save_as: bool = False


@dataclass(frozen=True)
class DownloadDelta:
    """A state change reported by the subsystem.

    Attributes:
        handle: Handle returned by :meth:`DownloadBackend.download`.
        state: New state, if it changed.
        error: Error code, if the download failed.
    """

    handle: int
    state: Optional[str] = None
    error: Optional[str] = None


DeltaListener = Callable[[DownloadDelta], Awaitable[None]]


class DownloadBackend(ABC):
    """Abstract download subsystem.

    Implementations must not report a delta for a handle before
    :meth:`download` has returned that handle.
    """

    @abstractmethod
    def subscribe(self, listener: DeltaListener) -> None:
        """Register *listener* for every :class:`DownloadDelta`."""

    @abstractmethod
    async def download(self, request: DownloadRequest) -> Optional[int]:
        """Start a download and return its handle, or ``None`` if refused."""

    @abstractmethod
    async def search(self, handle: int) -> str:
        """Return the final path of a completed download."""

    @abstractmethod
    async def erase(self, handle: int) -> None:
        """Remove a download from the visible history (the file is kept)."""


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


@dataclass
class PendingDownload:
    session_id: str
    source_url: str
    auto_erase: bool
    on_success: Callable[[str], None]
    on_error: Callable[[Exception], None]


class DownloadCoordinator:
    """Correlates download handles with the captures waiting on them.

    Args:
        backend: The download subsystem.  The coordinator subscribes to its
            deltas on construction.
    """

    def __init__(self, backend: DownloadBackend) -> None:
        self.backend = backend
        self._pending: dict[int, PendingDownload] = {}
        backend.subscribe(self.handle_delta)

    def __len__(self) -> int:
        return len(self._pending)

    async def save_bytes(
        self,
        *,
        session_id: str,
        data: bytes,
        directory: str,
        filename: str,
        source_url: str,
        auto_erase: bool,
        save_prompt: bool,
    ) -> str:
        """Hand *data* to the subsystem and wait until it is on disk.

        Args:
            session_id: Capture session the file belongs to.
            data: File content.
            directory: Target directory relative to the subsystem root
                (empty for the root itself).
            filename: Desired filename; the subsystem may uniquify it.
            source_url: URL the content was captured from (for logging).
            auto_erase: Erase the entry from the subsystem's history once
                settled.
            save_prompt: Ask the user for a location.

        Returns:
            The basename the subsystem finally used.

        Raises:
            PersistenceError: If the subsystem refuses or fails the download.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def _on_success(name: str) -> None:
            if not future.done():
                future.set_result(name)

        def _on_error(exc: Exception) -> None:
            if not future.done():
                future.set_exception(exc)

        path = f"{directory}/{filename}" if directory else filename
        handle = await self.backend.download(
            DownloadRequest(source=data, filename=path, save_as=save_prompt)
        )
        if handle is None:
            raise PersistenceError(f"download of {path} was refused", code="REFUSED")

        self._pending[handle] = PendingDownload(
            session_id=session_id,
            source_url=source_url,
            auto_erase=auto_erase,
            on_success=_on_success,
            on_error=_on_error,
        )
        logger.debug("capturer: download %s started for %s", handle, path)
        return await future

    async def handle_delta(self, delta: DownloadDelta) -> None:
        """Settle the pending download *delta* refers to, if any.

        Deltas for unknown handles (downloads not started by the capturer)
        and intermediate state changes are ignored.
        """
        record = self._pending.get(delta.handle)
        if record is None:
            return

        if delta.state == STATE_COMPLETE:
            try:
                final_path = await self.backend.search(delta.handle)
            except Exception as exc:  # noqa: BLE001
                logger.error("capturer: cannot resolve download %s: %s", delta.handle, exc)
                record.on_error(PersistenceError(str(exc), code="SEARCH_FAILED"))
            else:
                record.on_success(PurePath(final_path).name)
        elif delta.error:
            logger.warning(
                "capturer: download %s of %s failed: %s",
                delta.handle,
                record.source_url,
                delta.error,
            )
            record.on_error(PersistenceError(f"download failed: {delta.error}", code=delta.error))
        else:
            return

        try:
            if record.auto_erase:
                await self.backend.erase(delta.handle)
        except Exception as exc:  # noqa: BLE001
            logger.error("capturer: cannot erase download %s: %s", delta.handle, exc)
        finally:
            self._pending.pop(delta.handle, None)
