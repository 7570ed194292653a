"""Unit tests for access tokens and the per-session fetch table."""

from __future__ import annotations

import asyncio

import pytest

from page_capture.capturer.access import AccessMap, access_token
from page_capture.capturer.models import CaptureResult
from page_capture.capturer.rewriters import RewriteMethod


class TestAccessToken:
    def test_fragment_is_ignored(self) -> None:
        assert access_token("https://example.com/a#x", RewriteMethod.NONE) == access_token(
            "https://example.com/a#y", RewriteMethod.NONE
        )

    def test_method_is_part_of_token(self) -> None:
        assert access_token("https://example.com/a.css", RewriteMethod.NONE) != access_token(
            "https://example.com/a.css", RewriteMethod.PROCESS_CSS_FILE
        )

    def test_token_is_sha1_hex(self) -> None:
        token = access_token("https://example.com/", RewriteMethod.NONE)
        assert len(token) == 40
        int(token, 16)


@pytest.mark.asyncio
class TestMemoize:
    async def test_concurrent_requests_share_one_fetch(self) -> None:
        access = AccessMap()
        calls = 0
        gate = asyncio.Event()

        async def fetch(future: asyncio.Future[CaptureResult]) -> CaptureResult:
            nonlocal calls
            calls += 1
            await gate.wait()
            return CaptureResult(url="a.png")

        def on_error(exc: Exception) -> CaptureResult:
            raise AssertionError(exc)

        first = asyncio.create_task(access.memoize("t", fetch, on_error))
        second = asyncio.create_task(access.memoize("t", fetch, on_error))
        await asyncio.sleep(0)
        assert access.pending() == 1
        gate.set()

        results = await asyncio.gather(first, second)
        assert calls == 1
        assert results[0] is results[1]
        assert access.pending() == 0

    async def test_settled_result_is_memoized(self) -> None:
        access = AccessMap()
        calls = 0

        async def fetch(future: asyncio.Future[CaptureResult]) -> CaptureResult:
            nonlocal calls
            calls += 1
            return CaptureResult(url="a.png")

        first = await access.memoize("t", fetch, lambda exc: CaptureResult(url="err"))
        again = await access.memoize("t", fetch, lambda exc: CaptureResult(url="err"))
        assert calls == 1
        assert again is first

    async def test_failure_becomes_shared_error_record(self) -> None:
        access = AccessMap()

        async def fetch(future: asyncio.Future[CaptureResult]) -> CaptureResult:
            raise RuntimeError("boom")

        def on_error(exc: Exception) -> CaptureResult:
            return CaptureResult(url="urn:error", error=str(exc))

        result = await access.memoize("t", fetch, on_error)
        assert result.error == "boom"
        assert access.get("t").result() is result

    async def test_cancellation_cancels_shared_future(self) -> None:
        access = AccessMap()

        async def fetch(future: asyncio.Future[CaptureResult]) -> CaptureResult:
            await asyncio.Event().wait()
            return CaptureResult(url="never")

        owner = asyncio.create_task(access.memoize("t", fetch, lambda exc: CaptureResult(url="err")))
        await asyncio.sleep(0)
        owner.cancel()
        with pytest.raises(asyncio.CancelledError):
            await owner
        assert access.get("t").cancelled()


@pytest.mark.asyncio
class TestMergeRedirect:
    async def test_same_url_needs_no_merge(self) -> None:
        access = AccessMap()
        future = asyncio.get_running_loop().create_future()
        assert access.merge_redirect(future, "https://a/#x", "https://a/", RewriteMethod.NONE) is None

    async def test_new_target_is_registered_to_request(self) -> None:
        access = AccessMap()
        future = asyncio.get_running_loop().create_future()
        assert access.merge_redirect(future, "https://a/", "https://b/", RewriteMethod.NONE) is None
        assert access.get(access_token("https://b/", RewriteMethod.NONE)) is future

    async def test_known_target_returns_earlier_future(self) -> None:
        access = AccessMap()
        loop = asyncio.get_running_loop()
        earlier = loop.create_future()
        access._entries[access_token("https://b/", RewriteMethod.NONE)] = earlier

        current = loop.create_future()
        assert access.merge_redirect(current, "https://a/", "https://b/", RewriteMethod.NONE) is earlier
