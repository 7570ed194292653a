"""Encoding and decoding of ``data:`` URIs.

Inline captures reference every sub-resource as a ``data:`` URI.  The
filename a resource would have had is kept in a non-standard ``filename=``
parameter so that the URI can be turned back into a named file later::

    data:image/png;filename=logo.png;base64,iVBORw0KGgo...
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import mimetypes
import re
from dataclasses import dataclass
from urllib.parse import quote, unquote, unquote_to_bytes

from page_capture.core.exceptions import MalformedDataUriError

_DATA_URI_RE = re.compile(r"^data:([^,]*),(.*)$", re.IGNORECASE | re.DOTALL)

DEFAULT_DATA_URI_MIME: str = "text/plain"


@dataclass(frozen=True)
class DataUriFile:
    """A decoded ``data:`` URI.

    Attributes:
        name: The ``filename=`` parameter, or the SHA-1 of the bytes plus an
            extension guessed from the mime type.
        data: Decoded bytes.
        mime: Declared mime type (``text/plain`` when absent).
        charset: ``charset=`` parameter, or ``None``.
    """

    name: str
    data: bytes
    mime: str
    charset: str | None = None


def parse_data_uri(uri: str) -> DataUriFile:
    """Decode *uri* into a :class:`DataUriFile`.

    Args:
        uri: A ``data:`` URI without fragment.

    Returns:
        The decoded file.

    Raises:
        MalformedDataUriError: If *uri* is not a well-formed data URI or its
            base64 payload does not decode.
    """
    match = _DATA_URI_RE.match(uri)
    if match is None:
        raise MalformedDataUriError(url=uri[:64])
    meta, body = match.groups()

    params = [p.strip() for p in meta.split(";")] if meta else []
    is_base64 = bool(params) and params[-1].lower() == "base64"
    if is_base64:
        params = params[:-1]

    mime = DEFAULT_DATA_URI_MIME
    if params and "=" not in params[0]:
        mime = params.pop(0).lower() or DEFAULT_DATA_URI_MIME

    charset: str | None = None
    filename: str | None = None
    for param in params:
        key, _, value = param.partition("=")
        key = key.strip().lower()
        if key == "charset":
            charset = value.strip()
        elif key == "filename":
            filename = unquote(value.strip())

    if is_base64:
        try:
            data = base64.b64decode(unquote(body), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedDataUriError(url=uri[:64]) from exc
    else:
        data = unquote_to_bytes(body)

    if not filename:
        ext = mimetypes.guess_extension(mime) or ""
        filename = hashlib.sha1(data).hexdigest() + ext

    return DataUriFile(name=filename, data=data, mime=mime, charset=charset)


def build_data_uri(
    data: bytes,
    mime: str = "",
    *,
    charset: str | None = None,
    filename: str | None = None,
) -> str:
    """Encode *data* as a base64 ``data:`` URI.

    Args:
        data: Bytes to embed.
        mime: Content type; ``application/octet-stream`` when empty.
        charset: Optional ``charset=`` parameter.
        filename: Optional ``filename=`` parameter (percent-encoded).

    Returns:
        The data URI.
    """
    parts = [mime or "application/octet-stream"]
    if filename:
        parts.append("filename=" + quote(filename, safe=""))
    if charset:
        parts.append("charset=" + charset)
    return "data:" + ";".join(parts) + ";base64," + base64.b64encode(data).decode("ascii")
