"""Unit tests for the download coordinator and the local download backend."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import pytest

from page_capture.capturer.downloads import (
    STATE_COMPLETE,
    STATE_IN_PROGRESS,
    STATE_INTERRUPTED,
    DeltaListener,
    DownloadBackend,
    DownloadCoordinator,
    DownloadDelta,
    DownloadRequest,
)
from page_capture.capturer.local_downloads import LocalDownloadBackend
from page_capture.core.exceptions import PersistenceError


class RecordingBackend(DownloadBackend):
    """Backend whose deltas are emitted by the test."""

    def __init__(self, *, refuse: bool = False, lost: bool = False) -> None:
        self.refuse = refuse
        self.lost = lost
        self.listeners: list[DeltaListener] = []
        self.requests: list[DownloadRequest] = []
        self.erased: list[int] = []

    def subscribe(self, listener: DeltaListener) -> None:
        self.listeners.append(listener)

    async def download(self, request: DownloadRequest) -> Optional[int]:
        if self.refuse:
            return None
        self.requests.append(request)
        return len(self.requests)

    async def search(self, handle: int) -> str:
        if self.lost:
            raise KeyError(handle)
        return "/home/user/Downloads/" + self.requests[handle - 1].filename

    async def erase(self, handle: int) -> None:
        self.erased.append(handle)

    async def emit(self, delta: DownloadDelta) -> None:
        for listener in self.listeners:
            await listener(delta)


def _save(coordinator: DownloadCoordinator, *, auto_erase: bool = True) -> asyncio.Task[str]:
    return asyncio.create_task(
        coordinator.save_bytes(
            session_id="20230101000000000",
            data=b"body",
            directory="PageCapture/data/20230101000000000",
            filename="a.png",
            source_url="https://example.com/a.png",
            auto_erase=auto_erase,
            save_prompt=False,
        )
    )


@pytest.mark.asyncio
class TestDownloadCoordinator:
    async def test_request_shape(self) -> None:
        backend = RecordingBackend()
        coordinator = DownloadCoordinator(backend)
        task = _save(coordinator)
        await asyncio.sleep(0)

        request = backend.requests[0]
        assert request.filename == "PageCapture/data/20230101000000000/a.png"
        assert request.conflict_action == "uniquify"
        assert request.save_as is False

        await backend.emit(DownloadDelta(handle=1, state=STATE_COMPLETE))
        await task

    async def test_complete_resolves_with_basename_and_erases(self) -> None:
        backend = RecordingBackend()
        coordinator = DownloadCoordinator(backend)
        task = _save(coordinator)
        await asyncio.sleep(0)

        await backend.emit(DownloadDelta(handle=1, state=STATE_COMPLETE))
        assert await task == "a.png"
        assert backend.erased == [1]
        assert len(coordinator) == 0

    async def test_primary_file_is_not_erased(self) -> None:
        backend = RecordingBackend()
        coordinator = DownloadCoordinator(backend)
        task = _save(coordinator, auto_erase=False)
        await asyncio.sleep(0)

        await backend.emit(DownloadDelta(handle=1, state=STATE_COMPLETE))
        await task
        assert backend.erased == []

    async def test_error_rejects_with_backend_code(self) -> None:
        backend = RecordingBackend()
        coordinator = DownloadCoordinator(backend)
        task = _save(coordinator)
        await asyncio.sleep(0)

        await backend.emit(DownloadDelta(handle=1, state=STATE_INTERRUPTED, error="FILE_NO_SPACE"))
        with pytest.raises(PersistenceError) as excinfo:
            await task
        assert excinfo.value.code == "FILE_NO_SPACE"
        assert backend.erased == [1]
        assert len(coordinator) == 0

    async def test_failed_search_rejects(self) -> None:
        backend = RecordingBackend(lost=True)
        coordinator = DownloadCoordinator(backend)
        task = _save(coordinator)
        await asyncio.sleep(0)

        await backend.emit(DownloadDelta(handle=1, state=STATE_COMPLETE))
        with pytest.raises(PersistenceError) as excinfo:
            await task
        assert excinfo.value.code == "SEARCH_FAILED"

    async def test_intermediate_and_foreign_deltas_ignored(self) -> None:
        backend = RecordingBackend()
        coordinator = DownloadCoordinator(backend)
        task = _save(coordinator)
        await asyncio.sleep(0)

        await backend.emit(DownloadDelta(handle=1, state=STATE_IN_PROGRESS))
        await backend.emit(DownloadDelta(handle=99, state=STATE_COMPLETE))
        assert len(coordinator) == 1
        assert not task.done()

        await backend.emit(DownloadDelta(handle=1, state=STATE_COMPLETE))
        await task

    async def test_refused_download_fails_immediately(self) -> None:
        coordinator = DownloadCoordinator(RecordingBackend(refuse=True))
        with pytest.raises(PersistenceError) as excinfo:
            await _save(coordinator)
        assert excinfo.value.code == "REFUSED"


@pytest.mark.asyncio
class TestLocalDownloadBackend:
    async def test_writes_below_root(self, tmp_path: Path, backend: LocalDownloadBackend) -> None:
        coordinator = DownloadCoordinator(backend)
        name = await coordinator.save_bytes(
            session_id="s",
            data=b"hello",
            directory="PageCapture/data/s",
            filename="a.txt",
            source_url="https://example.com/a.txt",
            auto_erase=False,
            save_prompt=False,
        )
        assert name == "a.txt"
        assert (tmp_path / "PageCapture" / "data" / "s" / "a.txt").read_bytes() == b"hello"
        assert [item.state for item in backend.history] == [STATE_COMPLETE]

    async def test_conflicts_uniquified(self, tmp_path: Path, backend: LocalDownloadBackend) -> None:
        coordinator = DownloadCoordinator(backend)
        names = [
            await coordinator.save_bytes(
                session_id="s",
                data=content,
                directory="",
                filename="page.html",
                source_url="https://example.com/",
                auto_erase=False,
                save_prompt=True,
            )
            for content in (b"one", b"two")
        ]
        assert names == ["page.html", "page (1).html"]
        assert (tmp_path / "page (1).html").read_bytes() == b"two"

    async def test_concurrent_writes_of_one_name(self, tmp_path: Path, backend: LocalDownloadBackend) -> None:
        coordinator = DownloadCoordinator(backend)
        names = await asyncio.gather(
            *(
                coordinator.save_bytes(
                    session_id="s",
                    data=content,
                    directory="",
                    filename="same.txt",
                    source_url="https://example.com/",
                    auto_erase=False,
                    save_prompt=False,
                )
                for content in (b"one", b"two", b"three")
            )
        )
        assert sorted(names) == ["same (1).txt", "same (2).txt", "same.txt"]
        contents = {(tmp_path / name).read_bytes() for name in names}
        assert contents == {b"one", b"two", b"three"}

    async def test_auto_erase_clears_history_keeps_file(
        self, tmp_path: Path, backend: LocalDownloadBackend
    ) -> None:
        coordinator = DownloadCoordinator(backend)
        await coordinator.save_bytes(
            session_id="s",
            data=b"x",
            directory="d",
            filename="x.css",
            source_url="https://example.com/x.css",
            auto_erase=True,
            save_prompt=False,
        )
        await backend.join()
        assert backend.history == []
        assert (tmp_path / "d" / "x.css").exists()

    async def test_path_escaping_root_is_refused(self, backend: LocalDownloadBackend) -> None:
        coordinator = DownloadCoordinator(backend)
        with pytest.raises(PersistenceError):
            await coordinator.save_bytes(
                session_id="s",
                data=b"x",
                directory="..",
                filename="evil.txt",
                source_url="https://example.com/",
                auto_erase=False,
                save_prompt=False,
            )
