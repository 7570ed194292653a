"""Page agent seam.

The page agent owns everything that needs DOM semantics: serialising a live
document, rewriting the URLs inside it, and calling back into the capturer
for each referenced resource (``downloadFile``, ``captureUrl`` for frames)
before it hands the finished document to ``saveDocument``.

:class:`PassthroughAgent` is the agent used when no DOM-capable agent is
attached.  It stores documents as served, without rewriting references, so
the service can capture pages end to end on its own.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from page_capture.capturer.documents import extract_title
from page_capture.capturer.models import (
    CaptureOptions,
    CaptureResult,
    CaptureSettings,
    CaptureUrlParams,
    DocumentData,
    RegisterDocumentParams,
    SaveDocumentParams,
    TabInfo,
)

if TYPE_CHECKING:
    from page_capture.capturer.orchestrator import Capturer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchedDocument:
    """A document retrieved by capture-url-as-source.

    Attributes:
        url: Final URL of the document.
        content: Response body.
        mime: ``text/html`` or ``application/xhtml+xml``.
        charset: Declared charset, if any.
    """

    url: str
    content: bytes
    mime: str
    charset: Optional[str] = None

    def text(self) -> str:
        try:
            return self.content.decode(self.charset or "utf-8", errors="replace")
        except LookupError:
            return self.content.decode("utf-8", errors="replace")


class PageAgent(ABC):
    """Interface of the component that captures documents."""

    @abstractmethod
    async def capture_tab(
        self,
        tab: TabInfo,
        settings: CaptureSettings,
        options: CaptureOptions,
    ) -> Optional[CaptureResult]:
        """Capture the live document shown in *tab*.

        Returns:
            The result of the main document, or ``None`` when the agent is
            not reachable for this tab.
        """

    @abstractmethod
    async def capture_document(
        self,
        document: FetchedDocument,
        settings: CaptureSettings,
        options: CaptureOptions,
    ) -> CaptureResult:
        """Capture a document fetched by capture-url-as-source."""


class PassthroughAgent(PageAgent):
    """Saves documents verbatim through the capturer's own operations.

    Args:
        capturer: The capturer to call back into.
    """

    def __init__(self, capturer: Capturer) -> None:
        self.capturer = capturer

    async def capture_tab(
        self,
        tab: TabInfo,
        settings: CaptureSettings,
        options: CaptureOptions,
    ) -> Optional[CaptureResult]:
        # Without access to the live DOM the served document is the best
        # available rendition of the tab.
        logger.debug("capturer: no live document for tab %s, capturing %s as source", tab.id, tab.url)
        return await self.capturer.capture_url(
            CaptureUrlParams(url=tab.url, settings=settings, options=options)
        )

    async def capture_document(
        self,
        document: FetchedDocument,
        settings: CaptureSettings,
        options: CaptureOptions,
    ) -> CaptureResult:
        registered = await self.capturer.register_document(
            RegisterDocumentParams(settings=settings, options=options)
        )
        data = DocumentData(
            content=document.content,
            mime=document.mime,
            charset=document.charset or "UTF-8",
            title=extract_title(document.text()),
        )
        return await self.capturer.save_document(
            SaveDocumentParams(
                data=data,
                document_name=registered.document_name,
                source_url=document.url,
                settings=settings,
                options=options,
            )
        )
