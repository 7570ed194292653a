"""Packaging of fetched content into the selected archive strategy.

Two entry points:

- :meth:`ArchivePackager.persist_bytes` packages a sub-resource (image,
  stylesheet, script, …) and returns the URL the referencing document should
  use for it.
- :meth:`ArchivePackager.save_document` packages a document.  For the main
  frame of an archive strategy this is also the finalize step: the entry
  document is added after all sub-resources, companion entries are written,
  and the archive is generated and persisted exactly once.

+---------------------+-------------------------+-------------------------------+
| strategy            | sub-resource            | main document                 |
+=====================+=========================+===============================+
| inline              | ``data:`` URI           | one ``.html``/``.xhtml`` file |
| flat-archive        | zip entry ``name``      | zip saved as ``.htz``         |
| timestamped-archive | zip entry ``<id>/name`` | zip + ``index.rdf`` as        |
|                     |                         | ``.maff``                     |
| folder              | file in ``data/<id>/``  | file in ``data/<id>/``        |
+---------------------+-------------------------+-------------------------------+
"""

from __future__ import annotations

import asyncio
import logging

from page_capture.capturer.archive import ArchiveBuilder
from page_capture.capturer.config import (
    COMPRESSIBLE_MIME_RE,
    COMPRESSION_MIN_SIZE,
    FLAT_ARCHIVE_EXTENSION,
    INDEX_FILENAME,
    MANIFEST_FILENAME,
    TIMESTAMPED_ARCHIVE_EXTENSION,
    XHTML_MIME,
)
from page_capture.capturer.data_uri import build_data_uri
from page_capture.capturer.documents import archive_manifest, index_redirect_stub
from page_capture.capturer.downloads import DownloadCoordinator
from page_capture.capturer.filenames import (
    escape_filename,
    split_url_by_anchor,
    url_to_filename,
    validate_filename,
)
from page_capture.capturer.models import (
    CaptureOptions,
    CaptureResult,
    CaptureSettings,
    DocumentData,
    SaveAs,
)
from page_capture.capturer.rewriters import Payload
from page_capture.capturer.session_store import CaptureSession, session_id_to_datetime
from page_capture.core.exceptions import PackagingError

logger = logging.getLogger(__name__)

_ARCHIVE_STRATEGIES: frozenset[SaveAs] = frozenset({SaveAs.FLAT_ARCHIVE, SaveAs.TIMESTAMPED_ARCHIVE})


def is_compressible(mime: str, size: int) -> bool:
    """Return ``True`` if a payload of *mime* and *size* bytes should be deflated."""
    return size >= COMPRESSION_MIN_SIZE and bool(COMPRESSIBLE_MIME_RE.search(mime or ""))


def collection_data_dir(options: CaptureOptions) -> str:
    return f"{options.collection_path}/data"


def session_dir(options: CaptureOptions, session_id: str) -> str:
    """Folder-strategy directory of a session, relative to the download root."""
    return f"{collection_data_dir(options)}/{session_id}"


def document_extension(mime: str) -> str:
    return ".xhtml" if mime == XHTML_MIME else ".html"


class ArchivePackager:
    """Persists captured content according to :class:`SaveAs`.

    Args:
        coordinator: Download coordinator used for every file that leaves
            the process.
    """

    def __init__(self, coordinator: DownloadCoordinator) -> None:
        self.coordinator = coordinator

    # ------------------------------------------------------------------
    # Sub-resources
    # ------------------------------------------------------------------

    async def persist_bytes(
        self,
        session: CaptureSession,
        payload: Payload,
        filename: str | None,
        source_url: str,
        options: CaptureOptions,
    ) -> CaptureResult:
        """Package one sub-resource.

        Args:
            session: Capture session.
            payload: Fetched (and rewritten) content.
            filename: Validated, session-unique name; optional for inline.
            source_url: URL the resource was requested by; its fragment is
                carried over to the returned URL.
            options: Capture options.

        Returns:
            The result whose ``url`` references the packaged resource.

        Raises:
            PackagingError: If a named strategy gets no filename.
            PersistenceError: If the download backend fails (folder).
        """
        _, source_hash = split_url_by_anchor(source_url)
        session_id = session.session_id

        if options.save_as is SaveAs.INLINE:
            data_uri = build_data_uri(
                payload.data, payload.mime, charset=payload.charset, filename=filename
            )
            return CaptureResult(session_id=session_id, source_url=source_url, url=data_uri + source_hash)

        if not filename:
            raise PackagingError(f"no filename for {source_url}")

        if options.save_as in _ARCHIVE_STRATEGIES:
            session.get_archive().add(
                self._entry_path(session, options, filename),
                payload.data,
                compress=is_compressible(payload.mime, len(payload.data)),
            )
            return CaptureResult(
                session_id=session_id,
                source_url=source_url,
                filename=filename,
                url=escape_filename(filename) + source_hash,
            )

        target_dir = session_dir(options, session_id)
        saved = await self.coordinator.save_bytes(
            session_id=session_id,
            data=payload.data,
            directory=target_dir,
            filename=filename,
            source_url=source_url,
            auto_erase=True,
            save_prompt=False,
        )
        return CaptureResult(
            session_id=session_id,
            source_url=source_url,
            target_dir=target_dir,
            filename=saved,
            url=escape_filename(saved) + source_hash,
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def save_document(
        self,
        session: CaptureSession,
        data: DocumentData,
        document_name: str,
        source_url: str,
        settings: CaptureSettings,
        options: CaptureOptions,
    ) -> CaptureResult:
        """Package a serialised document.

        Args:
            session: Capture session.
            data: The serialised document.
            document_name: Name registered through
                :func:`~page_capture.capturer.filenames.register_document_name`.
            source_url: URL of the document.
            settings: Frame settings; ``is_main_frame`` selects the finalize
                path.
            options: Capture options.

        Returns:
            The result for the saved document (for a main frame: the
            primary file).
        """
        ext = document_extension(data.mime)
        content = data.encoded()

        if options.save_as is SaveAs.INLINE:
            if not settings.is_main_frame:
                _, source_hash = split_url_by_anchor(source_url)
                data_uri = build_data_uri(content, data.mime, charset=data.charset)
                return CaptureResult(
                    session_id=session.session_id, source_url=source_url, url=data_uri + source_hash
                )
            return await self._save_primary(
                session, content, data.title, source_url, ext, options, force_extension=False
            )

        filename = validate_filename(document_name + ext, options.ascii_filenames_only)

        if options.save_as in _ARCHIVE_STRATEGIES:
            archive = session.get_archive()
            archive.add(
                self._entry_path(session, options, filename),
                content,
                compress=is_compressible(data.mime, len(content)),
            )
            if not settings.is_main_frame:
                return self._document_result(session, source_url, filename)

            self._add_companions(session, archive, filename, data, source_url, options)
            blob = await self._finalize(session, archive)
            archive_ext = (
                TIMESTAMPED_ARCHIVE_EXTENSION
                if options.save_as is SaveAs.TIMESTAMPED_ARCHIVE
                else FLAT_ARCHIVE_EXTENSION
            )
            return await self._save_primary(
                session, blob, data.title, source_url, archive_ext, options, force_extension=True
            )

        target_dir = session_dir(options, session.session_id)
        saved = await self.coordinator.save_bytes(
            session_id=session.session_id,
            data=content,
            directory=target_dir,
            filename=filename,
            source_url=source_url,
            auto_erase=not settings.is_main_frame,
            save_prompt=False,
        )
        if settings.is_main_frame and ext != ".html":
            saved = await self.coordinator.save_bytes(
                session_id=session.session_id,
                data=index_redirect_stub(escape_filename(saved)).encode("utf-8"),
                directory=target_dir,
                filename=INDEX_FILENAME,
                source_url=source_url,
                auto_erase=True,
                save_prompt=False,
            )
        return self._document_result(session, source_url, saved, target_dir=target_dir)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def primary_target(
        self,
        session_id: str,
        title: str | None,
        source_url: str,
        ext: str,
        options: CaptureOptions,
        *,
        force_extension: bool,
    ) -> tuple[str, str, bool]:
        """Decide where the primary file of a capture goes.

        Returns:
            ``(directory, filename, save_prompt)``.  Inside the collection
            the file is named by session ID and saved without a prompt;
            otherwise it is named after the title (or URL) and the user is
            prompted for a location.
        """
        if options.save_in_collection:
            return collection_data_dir(options), session_id + ext, False
        filename = validate_filename(title or url_to_filename(source_url), options.ascii_filenames_only)
        if force_extension or not filename.lower().endswith(ext):
            filename += ext
        return "", filename, True

    async def _save_primary(
        self,
        session: CaptureSession,
        data: bytes,
        title: str | None,
        source_url: str,
        ext: str,
        options: CaptureOptions,
        *,
        force_extension: bool,
    ) -> CaptureResult:
        target_dir, filename, save_prompt = self.primary_target(
            session.session_id, title, source_url, ext, options, force_extension=force_extension
        )
        saved = await self.coordinator.save_bytes(
            session_id=session.session_id,
            data=data,
            directory=target_dir,
            filename=filename,
            source_url=source_url,
            auto_erase=False,
            save_prompt=save_prompt,
        )
        return self._document_result(session, source_url, saved, target_dir=target_dir)

    def _entry_path(self, session: CaptureSession, options: CaptureOptions, filename: str) -> str:
        if options.save_as is SaveAs.TIMESTAMPED_ARCHIVE:
            return f"{session.session_id}/{filename}"
        return filename

    def _add_companions(
        self,
        session: CaptureSession,
        archive: ArchiveBuilder,
        filename: str,
        data: DocumentData,
        source_url: str,
        options: CaptureOptions,
    ) -> None:
        """Add the index redirect stub and, for timestamped archives, the manifest."""
        if not filename.lower().endswith(".html"):
            stub = index_redirect_stub(escape_filename(filename))
            encoded = stub.encode("utf-8")
            archive.add(
                self._entry_path(session, options, INDEX_FILENAME),
                encoded,
                compress=is_compressible("text/html", len(encoded)),
            )

        if options.save_as is SaveAs.TIMESTAMPED_ARCHIVE:
            manifest = archive_manifest(
                source_url=source_url,
                title=data.title,
                archived_at=session_id_to_datetime(session.session_id),
                index_filename=filename,
            )
            encoded = manifest.encode("utf-8")
            archive.add(
                self._entry_path(session, options, MANIFEST_FILENAME),
                encoded,
                compress=is_compressible("application/rdf+xml", len(encoded)),
            )

    async def _finalize(self, session: CaptureSession, archive: ArchiveBuilder) -> bytes:
        # Rendering a large archive is CPU bound; keep the event loop free.
        try:
            blob = await asyncio.to_thread(archive.generate)
        except (OSError, ValueError, RuntimeError) as exc:
            raise PackagingError(f"cannot generate archive: {exc}") from exc
        logger.info(
            "capturer: archive for session %s generated (%d entries, %d bytes)",
            session.session_id,
            len(archive),
            len(blob),
        )
        return blob

    def _document_result(
        self,
        session: CaptureSession,
        source_url: str,
        filename: str,
        *,
        target_dir: str | None = None,
    ) -> CaptureResult:
        _, source_hash = split_url_by_anchor(source_url)
        return CaptureResult(
            session_id=session.session_id,
            source_url=source_url,
            target_dir=target_dir,
            filename=filename,
            url=escape_filename(filename) + source_hash,
        )
