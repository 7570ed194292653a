"""Rewrite transforms applied to fetched payloads before packaging.

The page agent names the transform it needs when it requests a resource
(``rewriteMethod``).  The set of transforms is closed: every
:class:`RewriteMethod` member maps to exactly one handler in
:data:`REWRITE_HANDLERS`, and an unknown name fails validation of the
request instead of being looked up at call time.

The rewrite method is also part of the access token, so the same URL
fetched for two different purposes is fetched twice.
"""

from __future__ import annotations

import codecs
import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

if TYPE_CHECKING:
    from page_capture.capturer.models import CaptureOptions, CaptureSettings

logger = logging.getLogger(__name__)

_CSS_CHARSET_RULE_RE = re.compile(rb'^@charset\s+(["\'])[^"\']*\1\s*;')


class RewriteMethod(str, Enum):
    """How a fetched resource is used by the document referencing it.

    Attributes:
        NONE: Embedded file (image, font, media); bytes are kept as is.
        CAPTURE_URL: Headless document fetched by capture-url-as-source.
            Only namespaces the access token; the payload is untouched.
        PROCESS_CSS_FILE: Linked stylesheet; transcoded to UTF-8 with its
            ``@charset`` rule updated to match.
        TRANSCODE_TEXT: Any other text resource; transcoded to UTF-8.
    """

    NONE = ""
    CAPTURE_URL = "captureUrl"
    PROCESS_CSS_FILE = "processCssFile"
    TRANSCODE_TEXT = "transcodeText"


@dataclass(frozen=True)
class Payload:
    """Fetched bytes with the metadata the transforms and packager need.

    Attributes:
        data: Raw resource bytes.
        mime: Declared content type without parameters (may be empty).
        charset: Declared charset, or ``None``.
        url: Final URL after redirects, or ``None`` for decoded data URIs.
    """

    data: bytes
    mime: str = ""
    charset: Optional[str] = None
    url: Optional[str] = None


@dataclass(frozen=True)
class RewriteContext:
    settings: CaptureSettings
    options: CaptureOptions


RewriteHandler = Callable[[Payload, RewriteContext], Awaitable[Payload]]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _keep(payload: Payload, context: RewriteContext) -> Payload:  # noqa: ARG001
    return payload


def _decode(payload: Payload) -> str:
    """Decode *payload* by BOM, then declared charset, then UTF-8."""
    data = payload.data
    for bom, encoding in (
        (codecs.BOM_UTF8, "utf-8"),
        (codecs.BOM_UTF16_LE, "utf-16-le"),
        (codecs.BOM_UTF16_BE, "utf-16-be"),
    ):
        if data.startswith(bom):
            return data[len(bom):].decode(encoding, errors="replace")

    encoding = payload.charset or "utf-8"
    try:
        return data.decode(encoding, errors="replace")
    except LookupError:
        logger.debug("capturer: unknown charset %r for %s, using UTF-8", encoding, payload.url)
        return data.decode("utf-8", errors="replace")


async def _transcode_text(payload: Payload, context: RewriteContext) -> Payload:  # noqa: ARG001
    return replace(payload, data=_decode(payload).encode("utf-8"), charset="UTF-8")


async def _process_css_file(payload: Payload, context: RewriteContext) -> Payload:
    transcoded = await _transcode_text(payload, context)
    data = _CSS_CHARSET_RULE_RE.sub(b'@charset "UTF-8";', transcoded.data, count=1)
    return replace(transcoded, data=data)


REWRITE_HANDLERS: dict[RewriteMethod, RewriteHandler] = {
    RewriteMethod.NONE: _keep,
    RewriteMethod.CAPTURE_URL: _keep,
    RewriteMethod.PROCESS_CSS_FILE: _process_css_file,
    RewriteMethod.TRANSCODE_TEXT: _transcode_text,
}


async def apply_rewrite(
    method: RewriteMethod,
    payload: Payload,
    context: RewriteContext,
) -> Payload:
    """Run the handler registered for *method* on *payload*."""
    return await REWRITE_HANDLERS[method](payload, context)
