"""Pydantic parameter and result models of the capture operations.

Field names are snake_case in Python and camelCase on the wire, matching the
message shapes the page agent exchanges with the capturer::

    CaptureSettings(session_id="...", is_main_frame=True)
    CaptureSettings.model_validate({"sessionId": "...", "isMainFrame": True})
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from page_capture.capturer.rewriters import RewriteMethod

if TYPE_CHECKING:
    from page_capture.config.settings import Settings


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_message(self) -> dict[str, Any]:
        """Serialise to the camelCase dict exchanged with the page agent."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class SaveAs(str, Enum):
    """Archive strategy of a capture.

    Attributes:
        INLINE: One self-contained document; sub-resources become ``data:``
            URIs at their use site.
        FLAT_ARCHIVE: One zip (``.htz``) holding every resource by name.
        TIMESTAMPED_ARCHIVE: One zip (``.maff``) whose entries live under a
            folder named by the session ID, plus an ``index.rdf`` manifest.
        FOLDER: Every resource is saved as its own file in a per-session
            folder of the collection.
    """

    INLINE = "singleHtml"
    FLAT_ARCHIVE = "zip"
    TIMESTAMPED_ARCHIVE = "maff"
    FOLDER = "folder"


class CaptureMode(str, Enum):
    """What a tab capture records: the live document, its source, or a bookmark."""

    DOCUMENT = "document"
    SOURCE = "source"
    BOOKMARK = "bookmark"


# ---------------------------------------------------------------------------
# Options and settings
# ---------------------------------------------------------------------------


class CaptureOptions(_CamelModel):
    """User options of one capture.

    Attributes:
        save_as: Archive strategy.
        save_in_collection: Save primary files into the managed collection
            folder, named by session ID, without prompting.
        collection_path: Collection folder relative to the download root.
        ascii_filenames_only: Percent-encode non-ASCII filename characters.
        materialize_data_uris: Save ``data:`` URIs as files (ignored for
            :attr:`SaveAs.INLINE`).
        record_source_meta: Stamp generated documents with the source URL.
        link_unsaved_uri: Keep the original URL of failed resources instead
            of an error URN.
    """

    save_as: SaveAs = SaveAs.FOLDER
    save_in_collection: bool = True
    collection_path: str = "PageCapture"
    ascii_filenames_only: bool = False
    materialize_data_uris: bool = False
    record_source_meta: bool = False
    link_unsaved_uri: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> CaptureOptions:
        """Build the default options from the service settings."""
        return cls(
            save_as=SaveAs(settings.save_as),
            save_in_collection=settings.save_in_collection,
            collection_path=settings.collection_path,
            ascii_filenames_only=settings.ascii_filenames_only,
            materialize_data_uris=settings.materialize_data_uris,
            record_source_meta=settings.record_source_meta,
            link_unsaved_uri=settings.link_unsaved_uri,
        )


class CaptureSettings(_CamelModel):
    """Per-frame capture context shared by a document and its resources.

    Attributes:
        session_id: Capture session the frame belongs to.
        is_main_frame: ``True`` for the top-level document of the capture.
        document_name: Registered base name of the document, or ``None``
            when it still has to be derived from the response.
        referrer_chain: URLs of the documents that led to this one, used to
            break frame cycles.
        favicon_url: Favicon of the captured tab, when known.
    """

    session_id: str
    is_main_frame: bool = False
    document_name: Optional[str] = None
    referrer_chain: list[str] = Field(default_factory=list)
    favicon_url: Optional[str] = None


class TabInfo(_CamelModel):
    """The browser tab a capture starts from."""

    id: int
    url: str
    title: Optional[str] = None
    favicon_url: Optional[str] = None


class DocumentData(_CamelModel):
    """A serialised document produced by the page agent.

    Attributes:
        content: Document text (or already encoded bytes).
        mime: ``text/html`` or ``application/xhtml+xml``.
        charset: Encoding used when *content* is text.
        title: Document title, used to name primary files.
    """

    content: Union[str, bytes]
    mime: str = "text/html"
    charset: Optional[str] = "UTF-8"
    title: Optional[str] = None

    def encoded(self) -> bytes:
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode(self.charset or "utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class CaptureResult(_CamelModel):
    """Outcome of every capture operation.

    ``url`` is what the referencing document should link to: a relative
    filename, a ``data:`` URI, or an error placeholder when ``error`` is set.
    """

    session_id: Optional[str] = None
    source_url: Optional[str] = None
    target_dir: Optional[str] = None
    filename: Optional[str] = None
    url: str
    error: Optional[str] = None


class RegisterDocumentResult(_CamelModel):
    document_name: str


# ---------------------------------------------------------------------------
# Operation parameters
# ---------------------------------------------------------------------------


class CaptureTabParams(_CamelModel):
    tab: TabInfo
    mode: CaptureMode = CaptureMode.DOCUMENT
    options: Optional[CaptureOptions] = None


class CaptureTabsParams(_CamelModel):
    tabs: list[TabInfo]
    mode: CaptureMode = CaptureMode.DOCUMENT
    options: Optional[CaptureOptions] = None


class CaptureUrlParams(_CamelModel):
    """Parameters of capture-url-as-source and capture-bookmark."""

    url: str
    ref_url: Optional[str] = None
    settings: CaptureSettings
    options: CaptureOptions = Field(default_factory=CaptureOptions)


class CaptureFileParams(CaptureUrlParams):
    title: Optional[str] = None


class DownloadFileParams(CaptureUrlParams):
    rewrite_method: RewriteMethod = RewriteMethod.NONE


class RegisterDocumentParams(_CamelModel):
    settings: CaptureSettings
    options: CaptureOptions = Field(default_factory=CaptureOptions)


class SaveDocumentParams(_CamelModel):
    data: DocumentData
    document_name: str
    source_url: str
    settings: CaptureSettings
    options: CaptureOptions = Field(default_factory=CaptureOptions)


class PersistBytesParams(_CamelModel):
    """Parameters for packaging an already fetched payload.

    ``filename`` must already be validated and, unless the strategy is
    inline, allocated in the session.
    """

    data: bytes
    mime: str = ""
    filename: Optional[str] = None
    source_url: str
    settings: CaptureSettings
    options: CaptureOptions = Field(default_factory=CaptureOptions)


class EndCaptureParams(_CamelModel):
    session_id: str


class EndCaptureResult(_CamelModel):
    session_id: str
    ended: bool
