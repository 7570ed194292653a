"""Filename helpers and the per-session filename allocator.

Every name handed out inside a capture session is unique case-insensitively
(so the capture survives being unpacked on a case-insensitive filesystem)
and never collides with the reserved metadata names in
:data:`~page_capture.capturer.config.DEFAULT_FILES`.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING
from urllib.parse import quote, unquote

from page_capture.capturer.config import (
    FALLBACK_FILENAME,
    FILENAME_BASE_MAX_BYTES,
    FILENAME_BASE_MAX_CHARS,
)

if TYPE_CHECKING:
    from page_capture.capturer.session_store import CaptureSession

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]+")
_RESERVED_CHARS_RE = re.compile(r'[:"?*\\/|]')
_NON_ASCII_RE = re.compile(r"[^\x00-\x7f]+")
_URL_UNSAFE_RE = re.compile(r"[ %#]+")


# ---------------------------------------------------------------------------
# String helpers
# ---------------------------------------------------------------------------


def split_url_by_anchor(url: str) -> tuple[str, str]:
    """Split *url* into the part before the fragment and the fragment.

    The fragment keeps its leading ``#`` so that it can be appended back
    verbatim: ``"a.html#x"`` → ``("a.html", "#x")``.
    """
    pos = url.find("#")
    if pos == -1:
        return url, ""
    return url[:pos], url[pos:]


def filename_parts(filename: str) -> tuple[str, str]:
    """Split *filename* at its last dot into base and extension (without dot)."""
    pos = filename.rfind(".")
    if pos == -1:
        return filename, ""
    return filename[:pos], filename[pos + 1:]


def crop(text: str, max_length: int, *, by_bytes: bool = False, ellipsis: str = "...") -> str:
    """Shorten *text* to *max_length*, ending with *ellipsis* when cut.

    Args:
        text: String to shorten.
        max_length: Upper bound, counted in characters or UTF-8 bytes.
        by_bytes: Count UTF-8 bytes instead of characters.  A multi-byte
            character is never split.
        ellipsis: Marker appended to a cropped string; counted in the bound.

    Returns:
        *text* unchanged if it fits, otherwise the cropped string.
    """
    if by_bytes:
        encoded = text.encode("utf-8")
        if len(encoded) <= max_length:
            return text
        limit = max(0, max_length - len(ellipsis.encode("utf-8")))
        return encoded[:limit].decode("utf-8", errors="ignore") + ellipsis

    if len(text) <= max_length:
        return text
    return text[: max(0, max_length - len(ellipsis))] + ellipsis


def validate_filename(filename: str, force_ascii: bool = False) -> str:
    """Make *filename* safe on common filesystems and download managers.

    Control characters are dropped, characters reserved on Windows are
    replaced, a leading dot is escaped, trailing dots/spaces and leading
    ``~``/spaces are removed.  The result is never empty.

    Args:
        filename: A bare filename (no directory part).
        force_ascii: Percent-encode every non-ASCII run.

    Returns:
        The sanitised filename.
    """
    fn = _CONTROL_CHARS_RE.sub("", filename)
    fn = fn.lstrip(" ")
    if fn.startswith("."):
        fn = "_" + fn
    fn = fn.rstrip(". ")
    fn = _RESERVED_CHARS_RE.sub("_", fn)
    fn = fn.replace("<", "(").replace(">", ")")
    fn = fn.lstrip("~ ")
    if force_ascii:
        fn = _NON_ASCII_RE.sub(lambda m: quote(m.group(0), safe=""), fn)
    return fn or "_"


def url_to_filename(url: str) -> str:
    """Return the last path segment of *url*, percent-decoded when possible.

    Query string and fragment are ignored.  A segment that does not decode
    as UTF-8 is returned in its encoded form.
    """
    name = url
    for sep in ("?", "#"):
        pos = name.find(sep)
        if pos != -1:
            name = name[:pos]
    name = name[name.rfind("/") + 1:]
    try:
        return unquote(name, errors="strict")
    except UnicodeDecodeError:
        return name


def escape_filename(filename: str) -> str:
    """Percent-encode the characters that break *filename* as a relative URL."""
    return _URL_UNSAFE_RE.sub(lambda m: quote(m.group(0), safe=""), filename)


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


def allocate_filename(session: CaptureSession, filename: str) -> str:
    """Reserve a session-unique variant of *filename* and return it.

    The base is cropped to :data:`FILENAME_BASE_MAX_BYTES` UTF-8 bytes and
    then to :data:`FILENAME_BASE_MAX_CHARS` characters.  On a
    case-insensitive collision ``-1``, ``-2``, … is inserted before the
    extension until the name is free.

    Args:
        session: Capture session owning the filename set.
        filename: A validated filename (see :func:`validate_filename`).

    Returns:
        The allocated filename in its original case.
    """
    base, ext = filename_parts(filename or FALLBACK_FILENAME)
    base = crop(crop(base, FILENAME_BASE_MAX_BYTES, by_bytes=True), FILENAME_BASE_MAX_CHARS)
    suffix = "." + ext if ext else ""

    candidate = base + suffix
    count = 0
    while candidate.lower() in session.filenames:
        count += 1
        candidate = f"{base}-{count}{suffix}"
    session.filenames.add(candidate.lower())
    return candidate


def register_document_name(session: CaptureSession, document_name: str) -> str:
    """Reserve *document_name* for both ``.html`` and ``.xhtml`` and return it.

    The final extension of a document is only known once its content type
    is, so both variants are taken at once.  Collisions are resolved with
    ``_1``, ``_2``, … appended to the name.
    """
    candidate = document_name
    count = 0
    while (
        candidate.lower() + ".html" in session.filenames
        or candidate.lower() + ".xhtml" in session.filenames
    ):
        count += 1
        candidate = f"{document_name}_{count}"
    session.filenames.add(candidate.lower() + ".html")
    session.filenames.add(candidate.lower() + ".xhtml")
    return candidate
