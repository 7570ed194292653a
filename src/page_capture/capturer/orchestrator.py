"""Capture orchestrator.

:class:`Capturer` exposes the capture operations and dispatches the
camelCase command messages the page agent and the HTTP router send::

    result = await capturer.invoke("downloadFile", {
        "url": "https://example.com/a.png",
        "settings": {"sessionId": "20240101000000000"},
        "options": {"saveAs": "zip"},
    })

Flow of one resource::

    download_file ──► AccessMap.memoize ──► Transport.open (headers)
                                                │
                          redirect merged? ◄────┘──► abort, adopt earlier result
                                                │
                            validate + allocate filename
                                                │
                            read body ──► apply_rewrite ──► ArchivePackager

Per-resource failures become error placeholders; only the top-level
operations (``capture_tab``) report a failure to their caller.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from typing import Any, Optional

from pydantic import BaseModel

from page_capture.capturer.access import access_token
from page_capture.capturer.agent import FetchedDocument, PageAgent, PassthroughAgent
from page_capture.capturer.config import (
    BOOKMARK_EXTENSION,
    CIRCULAR_URN_PREFIX,
    DOCUMENT_MIME_TYPES,
    ERROR_URN_PREFIX,
    TAB_CAPTURE_STAGGER,
)
from page_capture.capturer.data_uri import parse_data_uri
from page_capture.capturer.documents import (
    bookmark_document,
    extract_title,
    file_redirect_document,
)
from page_capture.capturer.downloads import DownloadCoordinator
from page_capture.capturer.filenames import (
    allocate_filename,
    escape_filename,
    filename_parts,
    register_document_name,
    split_url_by_anchor,
    url_to_filename,
    validate_filename,
)
from page_capture.capturer.http_fetcher import ResponseMeta, Transport, check_status
from page_capture.capturer.models import (
    CaptureFileParams,
    CaptureMode,
    CaptureOptions,
    CaptureResult,
    CaptureSettings,
    CaptureTabParams,
    CaptureTabsParams,
    CaptureUrlParams,
    DocumentData,
    DownloadFileParams,
    EndCaptureParams,
    EndCaptureResult,
    PersistBytesParams,
    RegisterDocumentParams,
    RegisterDocumentResult,
    SaveAs,
    SaveDocumentParams,
)
from page_capture.capturer.packager import ArchivePackager
from page_capture.capturer.rewriters import Payload, RewriteContext, RewriteMethod, apply_rewrite
from page_capture.capturer.session_store import CaptureSession, SessionStore
from page_capture.core.exceptions import (
    CaptureTargetUnavailableError,
    FetchError,
    PageCaptureError,
    UnknownCommandError,
)
from page_capture.core.logging_config import capture_session_var

logger = logging.getLogger(__name__)

_ERROR_URN_SCHEMES: frozenset[str] = frozenset({"http", "https", "file"})


def error_placeholder(url: str, options: Optional[CaptureOptions] = None) -> str:
    """Return the reference used in place of a resource that was not saved.

    ``http``, ``https`` and ``file`` URLs become an error URN; data URIs
    become the bare ``data:`` error URN so the payload is not repeated.
    Other schemes, and every URL when ``link_unsaved_uri`` is set, keep the
    original URL.
    """
    if options is not None and options.link_unsaved_uri:
        return url
    scheme, sep, _ = url.partition(":")
    scheme = scheme.lower() if sep else ""
    if scheme in _ERROR_URN_SCHEMES:
        return ERROR_URN_PREFIX + url
    if scheme == "data":
        return ERROR_URN_PREFIX + "data:"
    return url


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class Capturer:
    """Entry point of every capture operation.

    Args:
        transport: Shared HTTP transport.
        coordinator: Download coordinator for files leaving the process.
        sessions: Session registry; a fresh one by default.
        agent: Page agent for document captures; defaults to
            :class:`~page_capture.capturer.agent.PassthroughAgent`.
        default_options: Options used when a tab capture brings none.
    """

    #: Command name → (parameter model, method name).
    COMMANDS: dict[str, tuple[type[BaseModel], str]] = {
        "captureTab": (CaptureTabParams, "capture_tab"),
        "captureTabs": (CaptureTabsParams, "capture_tabs"),
        "captureUrl": (CaptureUrlParams, "capture_url"),
        "captureBookmark": (CaptureUrlParams, "capture_bookmark"),
        "captureFile": (CaptureFileParams, "capture_file"),
        "registerDocument": (RegisterDocumentParams, "register_document"),
        "saveDocument": (SaveDocumentParams, "save_document"),
        "downloadFile": (DownloadFileParams, "download_file"),
        "downloadBlob": (PersistBytesParams, "persist_bytes"),
        "endCapture": (EndCaptureParams, "end_capture"),
    }

    def __init__(
        self,
        transport: Transport,
        coordinator: DownloadCoordinator,
        sessions: Optional[SessionStore] = None,
        agent: Optional[PageAgent] = None,
        default_options: Optional[CaptureOptions] = None,
    ) -> None:
        self.transport = transport
        self.coordinator = coordinator
        self.sessions = sessions if sessions is not None else SessionStore()
        self.packager = ArchivePackager(coordinator)
        self.agent = agent if agent is not None else PassthroughAgent(self)
        self.default_options = default_options or CaptureOptions()

    # ------------------------------------------------------------------
    # Command dispatch
    # ------------------------------------------------------------------

    async def invoke(self, command: str, payload: dict[str, Any]) -> Any:
        """Run *command* with a camelCase *payload* and return a camelCase reply.

        Raises:
            UnknownCommandError: If *command* is not a capture command.
            pydantic.ValidationError: If *payload* does not fit the command.
        """
        try:
            model, method_name = self.COMMANDS[command]
        except KeyError:
            raise UnknownCommandError(command) from None

        params = model.model_validate(payload)
        settings = getattr(params, "settings", None)
        token = capture_session_var.set(settings.session_id if settings is not None else None)
        try:
            result = await getattr(self, method_name)(params)
        finally:
            capture_session_var.reset(token)

        if isinstance(result, list):
            return [item.to_message() for item in result]
        return result.to_message()

    # ------------------------------------------------------------------
    # Top-level captures
    # ------------------------------------------------------------------

    async def capture_tab(self, params: CaptureTabParams) -> CaptureResult:
        """Capture one tab in a new session.

        The session is discarded once the capture settled, successfully or
        not.  A failure is reported as a single result whose ``error`` names
        the tab.
        """
        tab = params.tab
        options = params.options or self.default_options
        session_id = self.sessions.new_session_id()
        token = capture_session_var.set(session_id)
        settings = CaptureSettings(session_id=session_id, is_main_frame=True, document_name="index")
        logger.info("capturer: capturing tab %s (%s) as %s", tab.id, tab.url, options.save_as.value)

        try:
            url_params = CaptureUrlParams(url=tab.url, settings=settings, options=options)
            if params.mode is CaptureMode.BOOKMARK:
                response: Optional[CaptureResult] = await self.capture_bookmark(url_params)
            elif params.mode is CaptureMode.SOURCE:
                response = await self.capture_url(url_params)
            else:
                settings.favicon_url = tab.favicon_url
                response = await self.agent.capture_tab(tab, settings, options)

            if response is None:
                raise CaptureTargetUnavailableError()
            if response.error:
                raise PageCaptureError(response.error)
        except Exception as exc:  # noqa: BLE001
            message = f"Capture failed for [{tab.id}] {tab.url}: {_describe(exc)}"
            logger.error("capturer: %s", message)
            return CaptureResult(session_id=session_id, source_url=tab.url, url=tab.url, error=message)
        finally:
            self.sessions.discard(session_id)
            capture_session_var.reset(token)

        logger.info("capturer: tab %s saved as %s", tab.id, response.filename)
        return response

    async def capture_tabs(self, params: CaptureTabsParams) -> list[CaptureResult]:
        """Capture several tabs, each in its own session.

        Starts are staggered by :data:`TAB_CAPTURE_STAGGER` so consecutive
        captures get distinct session IDs and do not all hit the network at
        once.
        """

        async def _staggered(index: int, tab_params: CaptureTabParams) -> CaptureResult:
            await asyncio.sleep(index * TAB_CAPTURE_STAGGER)
            return await self.capture_tab(tab_params)

        results = await asyncio.gather(
            *(
                _staggered(index, CaptureTabParams(tab=tab, mode=params.mode, options=params.options))
                for index, tab in enumerate(params.tabs)
            )
        )
        return list(results)

    async def end_capture(self, params: EndCaptureParams) -> EndCaptureResult:
        """Discard a session opened by an external driver."""
        ended = params.session_id in self.sessions
        self.sessions.discard(params.session_id)
        return EndCaptureResult(session_id=params.session_id, ended=ended)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def capture_url(self, params: CaptureUrlParams) -> CaptureResult:
        """Fetch *params.url* and capture it as a document or a file.

        HTML and XHTML responses go to the page agent; anything else is
        captured through :meth:`capture_file`.  A frame that points back at
        one of the documents that led to it resolves to a circular-reference
        placeholder without a fetch.
        """
        settings, options = params.settings, params.options
        session = self.sessions.get(settings.session_id)
        source_main, _ = split_url_by_anchor(params.url)

        if not settings.is_main_frame:
            chain = {split_url_by_anchor(url)[0] for url in settings.referrer_chain}
            if source_main in chain:
                logger.info("capturer: circular frame reference to %s", source_main)
                return CaptureResult(
                    session_id=session.session_id,
                    source_url=params.url,
                    url=CIRCULAR_URN_PREFIX + params.url,
                )

        return await session.access.memoize(
            access_token(source_main, RewriteMethod.CAPTURE_URL),
            lambda future: self._capture_url(session, params, future),
            lambda exc: self._error_result(session, params.url, options, exc),
        )

    async def _capture_url(
        self,
        session: CaptureSession,
        params: CaptureUrlParams,
        future: asyncio.Future[CaptureResult],
    ) -> CaptureResult:
        settings, options = params.settings, params.options
        source_main, source_hash = split_url_by_anchor(params.url)

        if source_main.startswith("data:"):
            file = parse_data_uri(source_main)
            mime = self._derive_document_name(settings, file.mime, file.name)
            document = FetchedDocument(url=params.url, content=file.data, mime=mime, charset=file.charset)
        else:
            async with self.transport.open(source_main, referrer=params.ref_url) as response:
                merged = session.access.merge_redirect(
                    future, source_main, str(response.url), RewriteMethod.CAPTURE_URL
                )
                if merged is not None:
                    await self.transport.abort(response)
                    return await asyncio.shield(merged)
                check_status(response, source_main)
                meta = ResponseMeta.from_headers(response.headers)
                mime = self._derive_document_name(
                    settings,
                    meta.content_type,
                    meta.filename or url_to_filename(source_main),
                )
                if mime not in DOCUMENT_MIME_TYPES:
                    # Not a document: capture_file fetches it as a resource.
                    document = None
                else:
                    body = await self.transport.read(response)
                    document = FetchedDocument(
                        url=str(response.url) + source_hash,
                        content=body,
                        mime=mime,
                        charset=meta.charset,
                    )

        if document is None or document.mime not in DOCUMENT_MIME_TYPES:
            return await self.capture_file(
                CaptureFileParams(
                    url=params.url,
                    ref_url=params.ref_url,
                    settings=settings,
                    options=options,
                )
            )
        return await self.agent.capture_document(document, settings, options)

    def _derive_document_name(
        self,
        settings: CaptureSettings,
        content_type: Optional[str],
        filename: str,
    ) -> str:
        """Fill in ``settings.document_name`` from the response and return its mime.

        A document extension matching the content type is dropped, so
        ``page.html`` is registered as ``page``.
        """
        mime = content_type or mimetypes.guess_type(filename)[0] or "text/html"
        if not settings.document_name:
            name = filename
            if mime in DOCUMENT_MIME_TYPES:
                lowered = name.lower()
                for ext in mimetypes.guess_all_extensions(mime) or [".html"]:
                    if lowered.endswith(ext) and len(name) > len(ext):
                        name = name[: -len(ext)]
                        break
            settings.document_name = name or "index"
        return mime

    async def capture_bookmark(self, params: CaptureUrlParams) -> CaptureResult:
        """Save a bookmark document that redirects to *params.url*."""
        settings, options = params.settings, params.options
        session = self.sessions.get(settings.session_id)
        _, source_hash = split_url_by_anchor(params.url)

        try:
            title = await self._fetch_title(params.url, params.ref_url)
            html = bookmark_document(
                session_id=session.session_id,
                source_url=params.url,
                title=title,
                record_source_meta=options.record_source_meta,
            )
            target_dir, filename, save_prompt = self.packager.primary_target(
                session.session_id, title, params.url, BOOKMARK_EXTENSION, options, force_extension=False
            )
            saved = await self.coordinator.save_bytes(
                session_id=session.session_id,
                data=html.encode("utf-8"),
                directory=target_dir,
                filename=filename,
                source_url=params.url,
                auto_erase=False,
                save_prompt=save_prompt,
            )
        except Exception as exc:  # noqa: BLE001
            return self._error_result(session, params.url, options, exc)

        return CaptureResult(
            session_id=session.session_id,
            source_url=params.url,
            target_dir=target_dir,
            filename=saved,
            url=escape_filename(saved) + source_hash,
        )

    async def _fetch_title(self, url: str, referrer: Optional[str]) -> Optional[str]:
        source_main, _ = split_url_by_anchor(url)
        if source_main.startswith("data:"):
            file = parse_data_uri(source_main)
            if file.mime not in DOCUMENT_MIME_TYPES:
                return None
            document = FetchedDocument(url=url, content=file.data, mime=file.mime, charset=file.charset)
            return extract_title(document.text())

        async with self.transport.open(source_main, referrer=referrer) as response:
            try:
                check_status(response, source_main)
            except FetchError as exc:
                logger.info("capturer: bookmarking %s without a title: %s", source_main, exc)
                return None
            meta = ResponseMeta.from_headers(response.headers)
            if meta.content_type not in DOCUMENT_MIME_TYPES:
                return None
            body = await self.transport.read(response)
        document = FetchedDocument(url=url, content=body, mime=meta.content_type, charset=meta.charset)
        return extract_title(document.text())

    async def capture_file(self, params: CaptureFileParams) -> CaptureResult:
        """Download a file; for a main frame also save a document redirecting to it."""
        settings, options = params.settings, params.options
        download = DownloadFileParams(url=params.url, ref_url=params.ref_url, settings=settings, options=options)
        if not settings.is_main_frame:
            response = await self.download_file(download)
            return CaptureResult(
                session_id=settings.session_id,
                source_url=params.url,
                target_dir=response.target_dir,
                filename=response.filename,
                url=response.url,
                error=response.error,
            )

        # The redirect document's name is taken before the file allocates its own.
        session = self.sessions.get(settings.session_id)
        document_name = register_document_name(session, settings.document_name or "index")
        response = await self.download_file(download)

        html = file_redirect_document(
            session_id=settings.session_id,
            source_url=params.url,
            target_url=response.url,
            title=params.title,
            record_source_meta=options.record_source_meta,
        )
        return await self.save_document(
            SaveDocumentParams(
                data=DocumentData(content=html, mime="text/html", charset="UTF-8", title=params.title),
                document_name=document_name,
                source_url=params.url,
                settings=settings,
                options=options,
            )
        )

    async def register_document(self, params: RegisterDocumentParams) -> RegisterDocumentResult:
        """Reserve a document name for both ``.html`` and ``.xhtml``."""
        session = self.sessions.get(params.settings.session_id)
        name = register_document_name(session, params.settings.document_name or "index")
        return RegisterDocumentResult(document_name=name)

    async def save_document(self, params: SaveDocumentParams) -> CaptureResult:
        """Package a serialised document; finalizes the capture for a main frame."""
        session = self.sessions.get(params.settings.session_id)
        try:
            return await self.packager.save_document(
                session,
                params.data,
                params.document_name,
                params.source_url,
                params.settings,
                params.options,
            )
        except Exception as exc:  # noqa: BLE001
            return self._error_result(session, params.source_url, params.options, exc)

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def download_file(self, params: DownloadFileParams) -> CaptureResult:
        """Fetch a sub-resource once per session and package it.

        Data URIs are only fetched (decoded) when ``materialize_data_uris``
        is set and the strategy is not inline; otherwise they are returned
        as their own reference.
        """
        settings, options = params.settings, params.options
        session = self.sessions.get(settings.session_id)
        source_main, _ = split_url_by_anchor(params.url)

        if source_main.startswith("data:") and (
            not options.materialize_data_uris or options.save_as is SaveAs.INLINE
        ):
            return CaptureResult(session_id=session.session_id, source_url=params.url, url=params.url)

        return await session.access.memoize(
            access_token(source_main, params.rewrite_method),
            lambda future: self._download_file(session, params, future),
            lambda exc: self._error_result(session, params.url, options, exc),
        )

    async def _download_file(
        self,
        session: CaptureSession,
        params: DownloadFileParams,
        future: asyncio.Future[CaptureResult],
    ) -> CaptureResult:
        options = params.options
        source_main, _ = split_url_by_anchor(params.url)

        if source_main.startswith("data:"):
            file = parse_data_uri(source_main)
            filename = self._allocate(session, file.name, options)
            payload = Payload(data=file.data, mime=file.mime, charset=file.charset, url=source_main)
        else:
            async with self.transport.open(source_main, referrer=params.ref_url) as response:
                merged = session.access.merge_redirect(
                    future, source_main, str(response.url), params.rewrite_method
                )
                if merged is not None:
                    await self.transport.abort(response)
                    return await asyncio.shield(merged)
                check_status(response, source_main)
                meta = ResponseMeta.from_headers(response.headers)

                filename = meta.filename or url_to_filename(source_main)
                if not filename_parts(filename)[1] and meta.content_type:
                    filename += mimetypes.guess_extension(meta.content_type) or ""
                filename = self._allocate(session, filename, options)

                body = await self.transport.read(response)
                payload = Payload(
                    data=body,
                    mime=meta.content_type or mimetypes.guess_type(filename)[0] or "",
                    charset=meta.charset,
                    url=str(response.url),
                )

        payload = await apply_rewrite(
            params.rewrite_method, payload, RewriteContext(params.settings, options)
        )
        return await self.packager.persist_bytes(session, payload, filename, params.url, options)

    async def persist_bytes(self, params: PersistBytesParams) -> CaptureResult:
        """Package bytes the caller already holds (a blob of the page)."""
        options = params.options
        session = self.sessions.get(params.settings.session_id)
        filename = params.filename
        if not filename and options.save_as is not SaveAs.INLINE:
            base = url_to_filename(split_url_by_anchor(params.source_url)[0])
            if params.mime and not filename_parts(base)[1]:
                base += mimetypes.guess_extension(params.mime) or ""
            filename = self._allocate(session, base, options)

        payload = Payload(data=params.data, mime=params.mime)
        try:
            return await self.packager.persist_bytes(session, payload, filename, params.source_url, options)
        except Exception as exc:  # noqa: BLE001
            return self._error_result(session, params.source_url, options, exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _allocate(self, session: CaptureSession, filename: str, options: CaptureOptions) -> str:
        filename = validate_filename(filename, options.ascii_filenames_only)
        if options.save_as is SaveAs.INLINE:
            return filename
        return allocate_filename(session, filename)

    def _error_result(
        self,
        session: CaptureSession,
        source_url: str,
        options: CaptureOptions,
        exc: Exception,
    ) -> CaptureResult:
        logger.warning("capturer: failed to save %s: %s", source_url, _describe(exc))
        session.failures.append(source_url)
        return CaptureResult(
            session_id=session.session_id,
            source_url=source_url,
            url=error_placeholder(source_url, options),
            error=_describe(exc),
        )
