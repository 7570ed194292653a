"""Download backend writing into a local directory.

Stands in for a browser download manager when the capturer runs as a
service: every download is written below ``root`` by a background task,
reported through the subscribed listeners, and kept in an in-memory history
that entries can be erased from.  Name conflicts are resolved the way
browsers do it, ``page.html`` → ``page (1).html``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional

from page_capture.capturer.downloads import (
    CONFLICT_UNIQUIFY,
    STATE_COMPLETE,
    STATE_IN_PROGRESS,
    STATE_INTERRUPTED,
    DeltaListener,
    DownloadBackend,
    DownloadDelta,
    DownloadRequest,
)

logger = logging.getLogger(__name__)


@dataclass
class DownloadItem:
    """History entry of one download."""

    handle: int
    requested: str
    state: str = STATE_IN_PROGRESS
    filename: Optional[str] = None
    error: Optional[str] = None


def _store(target: Path, data: bytes, uniquify: bool) -> Path:
    """Write *data* to *target* and return the path actually written.

    Runs in a worker thread.  With *uniquify* the file is created
    exclusively, so concurrent writes of one name end up in
    ``name.ext``, ``name (1).ext``, ...
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    if not uniquify:
        target.write_bytes(data)
        return target

    candidate = target
    for count in itertools.count(1):
        try:
            with candidate.open("xb") as fh:
                fh.write(data)
            return candidate
        except FileExistsError:
            candidate = target.with_name(f"{target.stem} ({count}){target.suffix}")
    raise AssertionError("unreachable")


class LocalDownloadBackend(DownloadBackend):
    """Writes downloads below *root*.

    Args:
        root: Directory all download paths are resolved against.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self._listeners: list[DeltaListener] = []
        self._items: dict[int, DownloadItem] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._ids = itertools.count(1)

    @property
    def history(self) -> list[DownloadItem]:
        """Visible download history, oldest first."""
        return list(self._items.values())

    def subscribe(self, listener: DeltaListener) -> None:
        self._listeners.append(listener)

    async def download(self, request: DownloadRequest) -> Optional[int]:
        relative = PurePosixPath(request.filename)
        if relative.is_absolute() or ".." in relative.parts or not relative.name:
            logger.warning("capturer: refusing download outside root: %s", request.filename)
            return None

        handle = next(self._ids)
        self._items[handle] = DownloadItem(handle=handle, requested=request.filename)
        task = asyncio.create_task(self._write(handle, relative, request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return handle

    async def search(self, handle: int) -> str:
        item = self._items[handle]
        if item.filename is None:
            raise KeyError(f"download {handle} has no file")
        return item.filename

    async def erase(self, handle: int) -> None:
        self._items.pop(handle, None)

    async def join(self) -> None:
        """Wait until every started download has been written and reported."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _write(self, handle: int, relative: PurePosixPath, request: DownloadRequest) -> None:
        item = self._items[handle]
        if request.save_as:
            logger.info("capturer: no save dialog available, saving %s under %s", relative, self.root)

        target = self.root.joinpath(*relative.parts)
        try:
            target = await asyncio.to_thread(
                _store, target, request.source, request.conflict_action == CONFLICT_UNIQUIFY
            )
        except OSError as exc:
            logger.warning("capturer: writing %s failed: %s", target, exc)
            item.state = STATE_INTERRUPTED
            item.error = "FILE_FAILED"
            await self._emit(DownloadDelta(handle=handle, state=STATE_INTERRUPTED, error=item.error))
            return

        item.state = STATE_COMPLETE
        item.filename = str(target)
        await self._emit(DownloadDelta(handle=handle, state=STATE_COMPLETE))

    async def _emit(self, delta: DownloadDelta) -> None:
        for listener in list(self._listeners):
            await listener(delta)
