"""Unit tests for the payload rewrite handlers."""

from __future__ import annotations

import codecs

import pytest

from page_capture.capturer.models import CaptureOptions, CaptureSettings
from page_capture.capturer.rewriters import (
    REWRITE_HANDLERS,
    Payload,
    RewriteContext,
    RewriteMethod,
    apply_rewrite,
)

_CONTEXT = RewriteContext(CaptureSettings(session_id="20230101000000000"), CaptureOptions())


class TestStrategyTable:
    def test_every_method_has_a_handler(self) -> None:
        assert set(REWRITE_HANDLERS) == set(RewriteMethod)

    def test_unknown_method_name_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            RewriteMethod("processJsFile")


@pytest.mark.asyncio
class TestApplyRewrite:
    async def test_none_keeps_payload(self) -> None:
        payload = Payload(data=b"\x89PNG", mime="image/png")
        assert await apply_rewrite(RewriteMethod.NONE, payload, _CONTEXT) is payload

    async def test_transcode_text_to_utf8(self) -> None:
        payload = Payload(data="café".encode("latin-1"), mime="text/plain", charset="ISO-8859-1")
        result = await apply_rewrite(RewriteMethod.TRANSCODE_TEXT, payload, _CONTEXT)
        assert result.data == "café".encode("utf-8")
        assert result.charset == "UTF-8"

    async def test_bom_wins_over_declared_charset(self) -> None:
        payload = Payload(data=codecs.BOM_UTF8 + "ü".encode("utf-8"), charset="ISO-8859-1")
        result = await apply_rewrite(RewriteMethod.TRANSCODE_TEXT, payload, _CONTEXT)
        assert result.data == "ü".encode("utf-8")

    async def test_unknown_charset_falls_back_to_utf8(self) -> None:
        payload = Payload(data=b"plain", charset="x-no-such-charset")
        result = await apply_rewrite(RewriteMethod.TRANSCODE_TEXT, payload, _CONTEXT)
        assert result.data == b"plain"

    async def test_css_charset_rule_updated(self) -> None:
        css = '@charset "ISO-8859-1";\np::before { content: "é"; }'
        payload = Payload(data=css.encode("latin-1"), mime="text/css", charset="ISO-8859-1")
        result = await apply_rewrite(RewriteMethod.PROCESS_CSS_FILE, payload, _CONTEXT)
        assert result.data == '@charset "UTF-8";\np::before { content: "é"; }'.encode("utf-8")
        assert result.mime == "text/css"
