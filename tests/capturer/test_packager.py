"""Unit tests for archive strategy packaging."""

from __future__ import annotations

import io
import zipfile
from pathlib import Path

import pytest

from page_capture.capturer.data_uri import build_data_uri
from page_capture.capturer.downloads import DownloadCoordinator
from page_capture.capturer.local_downloads import LocalDownloadBackend
from page_capture.capturer.models import CaptureOptions, CaptureSettings, DocumentData, SaveAs
from page_capture.capturer.packager import ArchivePackager, is_compressible
from page_capture.capturer.rewriters import Payload
from page_capture.capturer.session_store import CaptureSession

SESSION_ID = "20230101000000000"
MAIN = CaptureSettings(session_id=SESSION_ID, is_main_frame=True, document_name="index")
FRAME = CaptureSettings(session_id=SESSION_ID, document_name="frame")


def _options(save_as: SaveAs, **overrides: object) -> CaptureOptions:
    return CaptureOptions(save_as=save_as, **overrides)


class TestIsCompressible:
    @pytest.mark.parametrize(
        "mime",
        ["text/css", "application/javascript", "application/xhtml+xml", "application/json"],
    )
    def test_text_like_types(self, mime: str) -> None:
        assert is_compressible(mime, 128) is True

    def test_small_payload_stored(self) -> None:
        assert is_compressible("text/css", 127) is False

    def test_binary_type_stored(self) -> None:
        assert is_compressible("image/png", 4096) is False


@pytest.mark.asyncio
class TestPersistBytes:
    async def test_inline_becomes_data_uri_with_fragment(self, coordinator: DownloadCoordinator) -> None:
        packager = ArchivePackager(coordinator)
        result = await packager.persist_bytes(
            CaptureSession(SESSION_ID),
            Payload(data=b"p{}", mime="text/css", charset="UTF-8"),
            "a.css",
            "https://example.com/a.css#frag",
            _options(SaveAs.INLINE),
        )
        assert result.url == build_data_uri(b"p{}", "text/css", charset="UTF-8", filename="a.css") + "#frag"
        assert result.filename is None

    async def test_flat_archive_entry(self, coordinator: DownloadCoordinator) -> None:
        packager = ArchivePackager(coordinator)
        session = CaptureSession(SESSION_ID)
        result = await packager.persist_bytes(
            session,
            Payload(data=b"\x89PNG", mime="image/png"),
            "my logo.png",
            "https://example.com/logo.png#x",
            _options(SaveAs.FLAT_ARCHIVE),
        )
        assert result.url == "my%20logo.png#x"
        assert session.get_archive().paths == ["my logo.png"]

    async def test_timestamped_archive_entry_prefixed(self, coordinator: DownloadCoordinator) -> None:
        packager = ArchivePackager(coordinator)
        session = CaptureSession(SESSION_ID)
        await packager.persist_bytes(
            session,
            Payload(data=b"p{}", mime="text/css"),
            "a.css",
            "https://example.com/a.css",
            _options(SaveAs.TIMESTAMPED_ARCHIVE),
        )
        assert session.get_archive().paths == [f"{SESSION_ID}/a.css"]

    async def test_folder_saves_file(
        self, tmp_path: Path, coordinator: DownloadCoordinator
    ) -> None:
        packager = ArchivePackager(coordinator)
        result = await packager.persist_bytes(
            CaptureSession(SESSION_ID),
            Payload(data=b"\x89PNG", mime="image/png"),
            "a.png",
            "https://example.com/a.png",
            _options(SaveAs.FOLDER),
        )
        assert result.target_dir == f"PageCapture/data/{SESSION_ID}"
        assert result.url == "a.png"
        assert (tmp_path / "PageCapture" / "data" / SESSION_ID / "a.png").read_bytes() == b"\x89PNG"


@pytest.mark.asyncio
class TestSaveDocument:
    async def test_inline_frame_becomes_data_uri(self, coordinator: DownloadCoordinator) -> None:
        packager = ArchivePackager(coordinator)
        result = await packager.save_document(
            CaptureSession(SESSION_ID),
            DocumentData(content="<p>frame</p>"),
            "frame",
            "https://example.com/frame.html",
            FRAME,
            _options(SaveAs.INLINE),
        )
        assert result.url.startswith("data:text/html;charset=UTF-8;base64,")

    async def test_inline_main_saved_in_collection(
        self, tmp_path: Path, coordinator: DownloadCoordinator
    ) -> None:
        packager = ArchivePackager(coordinator)
        result = await packager.save_document(
            CaptureSession(SESSION_ID),
            DocumentData(content="<p>page</p>", title="Page"),
            "index",
            "https://example.com/",
            MAIN,
            _options(SaveAs.INLINE),
        )
        assert result.filename == f"{SESSION_ID}.html"
        assert (tmp_path / "PageCapture" / "data" / f"{SESSION_ID}.html").read_text() == "<p>page</p>"

    async def test_inline_main_outside_collection_named_by_title(
        self, tmp_path: Path, coordinator: DownloadCoordinator
    ) -> None:
        packager = ArchivePackager(coordinator)
        result = await packager.save_document(
            CaptureSession(SESSION_ID),
            DocumentData(content="<p>page</p>", title="My: Page"),
            "index",
            "https://example.com/",
            MAIN,
            _options(SaveAs.INLINE, save_in_collection=False),
        )
        assert result.filename == "My_ Page.html"
        assert (tmp_path / "My_ Page.html").exists()

    async def test_flat_archive_finalized_by_main_document(
        self, tmp_path: Path, coordinator: DownloadCoordinator
    ) -> None:
        packager = ArchivePackager(coordinator)
        session = CaptureSession(SESSION_ID)
        options = _options(SaveAs.FLAT_ARCHIVE)
        await packager.persist_bytes(
            session, Payload(data=b"\x89PNG", mime="image/png"), "a.png", "https://example.com/a.png", options
        )
        frame = await packager.save_document(
            session, DocumentData(content="<p>f</p>"), "frame", "https://example.com/f.html", FRAME, options
        )
        assert frame.url == "frame.html"

        result = await packager.save_document(
            session, DocumentData(content="<p>main</p>"), "index", "https://example.com/", MAIN, options
        )
        assert result.filename == f"{SESSION_ID}.htz"
        blob = (tmp_path / "PageCapture" / "data" / f"{SESSION_ID}.htz").read_bytes()
        assert sorted(zipfile.ZipFile(io.BytesIO(blob)).namelist()) == ["a.png", "frame.html", "index.html"]

    async def test_flat_archive_xhtml_gets_index_stub(
        self, tmp_path: Path, coordinator: DownloadCoordinator
    ) -> None:
        packager = ArchivePackager(coordinator)
        result = await packager.save_document(
            CaptureSession(SESSION_ID),
            DocumentData(content="<html/>", mime="application/xhtml+xml", title="Doc"),
            "index",
            "https://example.com/doc.xhtml",
            MAIN,
            _options(SaveAs.FLAT_ARCHIVE, save_in_collection=False),
        )
        assert result.filename == "Doc.htz"
        archive = zipfile.ZipFile(io.BytesIO((tmp_path / "Doc.htz").read_bytes()))
        assert sorted(archive.namelist()) == ["index.html", "index.xhtml"]
        assert b"url=index.xhtml" in archive.read("index.html")

    async def test_document_entries_follow_size_rule(
        self, tmp_path: Path, coordinator: DownloadCoordinator
    ) -> None:
        packager = ArchivePackager(coordinator)
        session = CaptureSession(SESSION_ID)
        options = _options(SaveAs.TIMESTAMPED_ARCHIVE)
        await packager.save_document(
            session, DocumentData(content="<p>f</p>"), "frame", "https://example.com/f.html", FRAME, options
        )
        await packager.save_document(
            session,
            DocumentData(content="<p>main</p>" * 50, mime="application/xhtml+xml"),
            "index",
            "https://example.com/",
            MAIN,
            options,
        )

        blob = (tmp_path / "PageCapture" / "data" / f"{SESSION_ID}.maff").read_bytes()
        infos = {info.filename: info for info in zipfile.ZipFile(io.BytesIO(blob)).infolist()}
        assert infos[f"{SESSION_ID}/frame.html"].compress_type == zipfile.ZIP_STORED
        assert infos[f"{SESSION_ID}/index.html"].compress_type == zipfile.ZIP_STORED
        assert infos[f"{SESSION_ID}/index.xhtml"].compress_type == zipfile.ZIP_DEFLATED
        assert infos[f"{SESSION_ID}/index.rdf"].compress_type == zipfile.ZIP_DEFLATED

    async def test_folder_frame_is_auto_erased(
        self, tmp_path: Path, backend: LocalDownloadBackend, coordinator: DownloadCoordinator
    ) -> None:
        packager = ArchivePackager(coordinator)
        result = await packager.save_document(
            CaptureSession(SESSION_ID),
            DocumentData(content="<p>f</p>"),
            "frame",
            "https://example.com/f.html#top",
            FRAME,
            _options(SaveAs.FOLDER),
        )
        await backend.join()
        assert result.url == "frame.html#top"
        assert (tmp_path / "PageCapture" / "data" / SESSION_ID / "frame.html").exists()
        assert backend.history == []
