"""Constants for the capture core."""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Filenames
# ---------------------------------------------------------------------------

#: Names reserved in every session before any resource is allocated.  They
#: belong to archive metadata files and must never be taken by a resource.
DEFAULT_FILES: frozenset[str] = frozenset({"index.rdf", "index.dat"})

#: Canonical name of the entry document inside a capture.
INDEX_FILENAME: str = "index.html"

#: Name of the timestamped-archive manifest.
MANIFEST_FILENAME: str = "index.rdf"

#: Upper bound of a filename base in UTF-8 bytes, applied first.
FILENAME_BASE_MAX_BYTES: int = 240

#: Upper bound of a filename base in characters, applied second.
FILENAME_BASE_MAX_CHARS: int = 128

#: Name used when no name can be derived at all.
FALLBACK_FILENAME: str = "untitled"

# ---------------------------------------------------------------------------
# Archive entries
# ---------------------------------------------------------------------------

#: Content types worth compressing inside an archive.
COMPRESSIBLE_MIME_RE: re.Pattern[str] = re.compile(
    r"^text/|\b(?:xml|json|javascript)\b", re.IGNORECASE
)

#: Payloads smaller than this are stored uncompressed regardless of type.
COMPRESSION_MIN_SIZE: int = 128

#: DEFLATE level used for compressible entries.
COMPRESSION_LEVEL: int = 9

#: Primary file extensions of each archive strategy.
FLAT_ARCHIVE_EXTENSION: str = ".htz"
TIMESTAMPED_ARCHIVE_EXTENSION: str = ".maff"
BOOKMARK_EXTENSION: str = ".htm"

# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

#: Content types handed to the page agent as documents rather than files.
DOCUMENT_MIME_TYPES: frozenset[str] = frozenset({"text/html", "application/xhtml+xml"})

XHTML_MIME: str = "application/xhtml+xml"

# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

#: Prefix of request headers the transport may not set directly.  The
#: outbound request hook strips it, so ``X-Capture-Referer`` leaves the
#: process as ``Referer``.
PROXIED_HEADER_PREFIX: str = "X-Capture-"

REFERER_HEADER: str = PROXIED_HEADER_PREFIX + "Referer"

# ---------------------------------------------------------------------------
# Placeholders
# ---------------------------------------------------------------------------

ERROR_URN_PREFIX: str = "urn:capture:download:error:"
CIRCULAR_URN_PREFIX: str = "urn:capture:download:circular:url:"

#: Delay between consecutive tabs of a multi-tab capture (seconds).
TAB_CAPTURE_STAGGER: float = 0.1
