"""Documents generated by the capturer itself.

- Redirect stubs: the ``index.html`` that forwards to an ``index.xhtml``
  entry document, and the main document of a file capture that forwards to
  the saved file.
- Bookmark documents: a meta-refresh to the original URL.
- The ``index.rdf`` manifest of timestamped archives.
- Title sniffing for bookmarks, using the stdlib ``html.parser``.  It only
  reads the ``<title>`` text; rewriting documents is the page agent's job.
"""

from __future__ import annotations

import html as html_module
import logging
import re
from datetime import datetime
from email.utils import format_datetime
from html.parser import HTMLParser

logger = logging.getLogger(__name__)


def _escape(value: str, quote: bool = True) -> str:
    return html_module.escape(value, quote=quote)


def _source_meta_attr(session_id: str, source_url: str, record: bool) -> str:
    if not record:
        return ""
    return f' data-capture-source-{session_id}="{_escape(source_url)}"'


# ---------------------------------------------------------------------------
# Redirect documents
# ---------------------------------------------------------------------------


def index_redirect_stub(target_url: str) -> str:
    """Return the minimal document that forwards to *target_url*."""
    return f'<meta charset="UTF-8"><meta http-equiv="refresh" content="0;url={_escape(target_url)}">'


def file_redirect_document(
    *,
    session_id: str,
    source_url: str,
    target_url: str,
    title: str | None = None,
    record_source_meta: bool = False,
) -> str:
    """Return the main document of a file capture.

    Args:
        session_id: Capture session ID.
        source_url: URL the file was captured from.
        target_url: Relative URL (or placeholder) of the saved file.
        title: Optional document title.
        record_source_meta: Stamp the document with *source_url*.
    """
    meta = _source_meta_attr(session_id, source_url, record_source_meta)
    title_line = f"<title>{_escape(title, quote=False)}</title>\n" if title else ""
    return (
        "<!DOCTYPE html>\n"
        f"<html{meta}>\n"
        "<head>\n"
        '<meta charset="UTF-8">\n'
        f'<meta http-equiv="refresh" content="0;url={_escape(target_url)}">\n'
        f"{title_line}</head>\n"
        "<body>\n"
        f'Redirecting to file <a href="{_escape(target_url)}">{_escape(source_url, quote=False)}</a>\n'
        "</body>\n"
        "</html>"
    )


def bookmark_document(
    *,
    session_id: str,
    source_url: str,
    title: str | None = None,
    record_source_meta: bool = False,
) -> str:
    """Return a bookmark document that forwards to *source_url*."""
    meta = _source_meta_attr(session_id, source_url, record_source_meta)
    title_line = f"<title>{_escape(title, quote=False)}</title>\n" if title else ""
    return (
        "<!DOCTYPE html>\n"
        f"<html{meta}>\n"
        "<head>\n"
        '<meta charset="UTF-8">\n'
        f'<meta http-equiv="refresh" content="0;url={_escape(source_url)}">\n'
        f"{title_line}</head>\n"
        "<body>\n"
        f'Bookmark for <a href="{_escape(source_url)}">{_escape(source_url, quote=False)}</a>\n'
        "</body>\n"
        "</html>"
    )


# ---------------------------------------------------------------------------
# Timestamped archive manifest
# ---------------------------------------------------------------------------


def archive_manifest(
    *,
    source_url: str,
    title: str | None,
    archived_at: datetime | None,
    index_filename: str,
    charset: str = "UTF-8",
) -> str:
    """Return the ``index.rdf`` manifest of a timestamped archive.

    Args:
        source_url: Original URL of the captured page.
        title: Page title (empty when unknown).
        archived_at: Capture time; rendered as an RFC 1123 GMT date.
        index_filename: Entry document name inside the session folder.
        charset: Charset recorded for the entry document.
    """
    archive_time = format_datetime(archived_at, usegmt=True) if archived_at else ""
    return f"""<?xml version="1.0"?>
<RDF:RDF xmlns:MAF="http://maf.mozdev.org/metadata/rdf#"
         xmlns:NC="http://home.netscape.com/NC-rdf#"
         xmlns:RDF="http://www.w3.org/1999/02/22-rdf-syntax-ns#">
  <RDF:Description RDF:about="urn:root">
    <MAF:originalurl RDF:resource="{_escape(source_url)}"/>
    <MAF:title RDF:resource="{_escape(title or "")}"/>
    <MAF:archivetime RDF:resource="{_escape(archive_time)}"/>
    <MAF:indexfilename RDF:resource="{_escape(index_filename)}"/>
    <MAF:charset RDF:resource="{_escape(charset)}"/>
  </RDF:Description>
</RDF:RDF>
"""


# ---------------------------------------------------------------------------
# Title sniffing
# ---------------------------------------------------------------------------


class _TitleParser(HTMLParser):
    """Collects the text of the first ``<title>`` element."""

    def __init__(self) -> None:
        super().__init__()
        self._chunks: list[str] = []
        self._in_title = False
        self.done = False

    def handle_starttag(self, tag: str, attrs: list) -> None:  # type: ignore[override]
        if tag.lower() == "title" and not self.done:
            self._in_title = True

    def handle_endtag(self, tag: str) -> None:
        if tag.lower() == "title" and self._in_title:
            self._in_title = False
            self.done = True

    def handle_data(self, data: str) -> None:
        if self._in_title:
            self._chunks.append(data)

    def get_title(self) -> str | None:
        title = re.sub(r"\s+", " ", "".join(self._chunks)).strip()
        return title or None


def extract_title(markup: str) -> str | None:
    """Return the ``<title>`` text of *markup*, or ``None``."""
    parser = _TitleParser()
    try:
        parser.feed(markup)
        parser.close()
    except Exception as exc:  # noqa: BLE001
        logger.debug("capturer: title parsing failed: %s", exc)
    return parser.get_title()
