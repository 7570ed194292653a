"""Async resource transport built on ``httpx``.

Responses are streamed: :meth:`Transport.open` yields as soon as the
response headers are in, before the body is read.  That is the point at
which the capturer learns the final URL after redirects and can abandon a
request whose target was already captured (:meth:`Transport.abort` closes
the stream without reading the body).

Referrers are sent through the ``X-Capture-Referer`` header.  Some hosts
restrict setting ``Referer`` directly, so callers always use the prefixed
name and the client's request hook (:func:`rewrite_proxied_headers`) renames
it right before the request leaves the process.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional
from urllib.parse import unquote

import httpx

from page_capture.capturer.config import PROXIED_HEADER_PREFIX, REFERER_HEADER
from page_capture.core.exceptions import FetchError

logger = logging.getLogger(__name__)

_PREFIX_LOWER = PROXIED_HEADER_PREFIX.lower()


# ---------------------------------------------------------------------------
# Response metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ResponseMeta:
    """Metadata taken from response headers.

    Attributes:
        content_type: Mime type without parameters, lowercased, or ``None``.
        charset: ``charset`` parameter of ``Content-Type``, or ``None``.
        filename: Filename declared by ``Content-Disposition``, or ``None``.
        is_attachment: ``True`` if the disposition type is ``attachment``.
    """

    content_type: Optional[str] = None
    charset: Optional[str] = None
    filename: Optional[str] = None
    is_attachment: bool = False

    @classmethod
    def from_headers(cls, headers: httpx.Headers) -> ResponseMeta:
        content_type, charset = parse_content_type(headers.get("content-type"))
        is_attachment, filename = parse_content_disposition(headers.get("content-disposition"))
        return cls(
            content_type=content_type,
            charset=charset,
            filename=filename,
            is_attachment=is_attachment,
        )


def parse_content_type(value: str | None) -> tuple[str | None, str | None]:
    """Return ``(mime, charset)`` from a ``Content-Type`` header value."""
    if not value:
        return None, None
    parts = [segment.strip() for segment in value.split(";")]
    mime = parts[0].lower() or None
    charset: str | None = None
    for part in parts[1:]:
        key, _, param = part.partition("=")
        if key.strip().lower() == "charset":
            charset = param.strip().strip('"') or None
    return mime, charset


def parse_content_disposition(value: str | None) -> tuple[bool, str | None]:
    """Return ``(is_attachment, filename)`` from a ``Content-Disposition`` value.

    The RFC 5987 ``filename*=`` form takes precedence over ``filename=``.
    """
    if not value:
        return False, None
    parts = [segment.strip() for segment in value.split(";") if segment.strip()]
    if not parts:
        return False, None
    is_attachment = parts[0].lower() == "attachment"

    plain: str | None = None
    for part in parts[1:]:
        key, _, candidate = part.partition("=")
        key = key.strip().lower()
        candidate = candidate.strip()
        if key == "filename*":
            _, _, encoded = candidate.partition("''")
            decoded = unquote(encoded or candidate).strip('"')
            if decoded:
                return is_attachment, decoded
        elif key == "filename" and plain is None:
            plain = candidate.strip('"') or None
    return is_attachment, plain


# ---------------------------------------------------------------------------
# Outbound request hook
# ---------------------------------------------------------------------------


async def rewrite_proxied_headers(request: httpx.Request) -> None:
    """Rename every ``X-Capture-*`` request header to its standard name."""
    proxied = [name for name in request.headers.keys() if name.lower().startswith(_PREFIX_LOWER)]
    for name in proxied:
        value = request.headers[name]
        del request.headers[name]
        request.headers[name[len(_PREFIX_LOWER):]] = value


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


def build_client(
    *,
    user_agent: str,
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create the shared :class:`httpx.AsyncClient` used for all captures.

    Args:
        user_agent: User-agent header sent with every request.
        timeout: Client timeout in seconds; ``None`` disables it.
        transport: Optional custom httpx transport (used by tests).

    Returns:
        A client with the proxied-header hook installed.
    """
    return httpx.AsyncClient(
        headers={"User-Agent": user_agent},
        timeout=timeout,
        follow_redirects=True,
        event_hooks={"request": [rewrite_proxied_headers]},
        transport=transport,
    )


class Transport:
    """Thin wrapper around the shared client.

    Args:
        client: The client from :func:`build_client`.

    Attributes:
        aborted: Number of responses closed before their body was read.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client
        self.aborted = 0

    @asynccontextmanager
    async def open(self, url: str, *, referrer: str | None = None) -> AsyncIterator[httpx.Response]:
        """Send a GET for *url* and yield the response once headers arrived.

        Args:
            url: Absolute http(s) URL.
            referrer: Value for the ``Referer`` header, if any.

        Yields:
            The streamed response; its body has not been read yet.

        Raises:
            FetchError: On network errors.
        """
        headers = {REFERER_HEADER: referrer} if referrer else {}
        request = self.client.build_request("GET", url, headers=headers)
        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise FetchError(f"request error: {exc}", url=url) from exc

        try:
            yield response
        finally:
            await response.aclose()

    async def abort(self, response: httpx.Response) -> None:
        """Close *response* without reading its body."""
        if not response.is_closed:
            self.aborted += 1
            logger.debug("capturer: aborted transfer of %s", response.url)
        await response.aclose()

    async def read(self, response: httpx.Response) -> bytes:
        """Read the remaining body of *response*.

        Raises:
            FetchError: If the connection fails while the body is read.
        """
        try:
            return await response.aread()
        except httpx.HTTPError as exc:
            raise FetchError(f"read error: {exc}", url=str(response.url)) from exc

    async def aclose(self) -> None:
        await self.client.aclose()


def check_status(response: httpx.Response, url: str) -> None:
    """Raise :class:`FetchError` for HTTP error statuses."""
    if response.status_code >= 400:
        logger.info("capturer: HTTP %d for %s", response.status_code, url)
        raise FetchError(
            f"HTTP {response.status_code}",
            url=url,
            status_code=response.status_code,
        )
