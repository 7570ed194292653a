"""Per-session fetch deduplication.

Each resource fetch is keyed by an *access token*: the SHA-1 of the URL
without its fragment plus the rewrite method it is fetched for.  The
:class:`AccessMap` holds one future per token.  The first request for a
token owns the fetch; every later request awaits the same future, so a
resource is downloaded at most once per session and all callers observe the
same result object.

Redirects are merged too: once response headers show that a request landed
on a URL whose token is already registered, the request adopts the earlier
future and the caller abandons its own transport call.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Awaitable, Callable

from page_capture.capturer.filenames import split_url_by_anchor
from page_capture.capturer.models import CaptureResult
from page_capture.capturer.rewriters import RewriteMethod

logger = logging.getLogger(__name__)

#: Builds the error record for a failed fetch from the raised exception.
ErrorRecordFactory = Callable[[Exception], CaptureResult]


def access_token(url: str, method: RewriteMethod) -> str:
    """Return the access token of *url* fetched for *method*."""
    url_main, _ = split_url_by_anchor(url)
    return hashlib.sha1(f"{url_main}\t{method.value}".encode("utf-8")).hexdigest()


class AccessMap:
    """In-flight table ``token → future`` for one capture session.

    Futures are never evicted: a settled future memoizes its result for the
    rest of the session.
    """

    def __init__(self) -> None:
        self._entries: dict[str, asyncio.Future[CaptureResult]] = {}

    def __contains__(self, token: str) -> bool:
        return token in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, token: str) -> asyncio.Future[CaptureResult] | None:
        return self._entries.get(token)

    def pending(self) -> int:
        """Return how many distinct fetches have not settled yet."""
        return len({id(f) for f in self._entries.values() if not f.done()})

    async def memoize(
        self,
        token: str,
        fetch: Callable[[asyncio.Future[CaptureResult]], Awaitable[CaptureResult]],
        on_error: ErrorRecordFactory,
    ) -> CaptureResult:
        """Run *fetch* once per *token* and share its result.

        The future is registered before the first suspension point, so a
        duplicate request issued in the same event-loop tick already finds
        it.  *fetch* receives the future so it can register redirect
        targets against it (see :meth:`merge_redirect`).

        Exceptions raised by *fetch* are converted by *on_error* into a
        settled error record; they never propagate to waiters.

        Args:
            token: Access token of the request.
            fetch: Coroutine function performing the fetch.
            on_error: Factory for the error record of a failed fetch.

        Returns:
            The memoized result for *token*.
        """
        previous = self._entries.get(token)
        if previous is not None:
            return await asyncio.shield(previous)

        future: asyncio.Future[CaptureResult] = asyncio.get_running_loop().create_future()
        self._entries[token] = future
        try:
            result = await fetch(future)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:  # noqa: BLE001
            result = on_error(exc)

        if not future.done():
            future.set_result(result)
        return result

    def merge_redirect(
        self,
        future: asyncio.Future[CaptureResult],
        request_url: str,
        response_url: str,
        method: RewriteMethod,
    ) -> asyncio.Future[CaptureResult] | None:
        """Reconcile a redirected request with the table.

        Args:
            future: The future owned by the request being fetched.
            request_url: URL the request was issued for.
            response_url: Final URL reported by the transport.
            method: Rewrite method of the request.

        Returns:
            The earlier future to adopt when the final URL was already
            requested, or ``None`` when the request should continue (in
            which case the final URL's token now points at *future*).
        """
        request_main, _ = split_url_by_anchor(request_url)
        response_main, _ = split_url_by_anchor(response_url)
        if response_main == request_main:
            return None

        token = access_token(response_main, method)
        previous = self._entries.get(token)
        if previous is not None and previous is not future:
            logger.debug(
                "capturer: %s redirects to already requested %s", request_main, response_main
            )
            return previous
        self._entries[token] = future
        return None
