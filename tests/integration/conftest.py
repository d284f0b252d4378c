"""
Integration test fixtures — an in-process CRL distribution point.

FakeCrlServer answers GETs through respx the way a real distribution point
does: it serves published CRL bytes with an ETag and, unless told otherwise,
answers 304 when If-None-Match carries that ETag. Unpublished URLs get 404.
Every request goes through the real httpx client of the adapters under test.
"""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Iterator

import httpx
import pytest
import respx

FEED_URL = "https://ccadb.example.com/MozillaIntermediateCertsCSVReport"


class FakeCrlServer:
    """Published CRLs by URL, plus the request log."""

    def __init__(self, router: respx.MockRouter, honor_etag: bool = True) -> None:
        self._router = router
        self._lock = threading.Lock()
        self.honor_etag = honor_etag
        self.bodies: dict[str, bytes] = {}
        self.statuses: dict[str, int] = {}
        self.feed_route: respx.Route | None = None

    def publish(self, url: str, body: bytes) -> None:
        self.bodies[url] = body
        self._router.get(url).mock(side_effect=self._respond)

    def withdraw(self, url: str) -> None:
        """Keep the route but answer 404, as after a CA stops publishing."""
        self.bodies.pop(url, None)
        self._router.get(url).mock(side_effect=self._respond)

    def serve_feed(self, text: str) -> None:
        self.feed_route = self._router.get(FEED_URL).mock(
            side_effect=lambda request: httpx.Response(200, text=text)
        )

    def serve_feed_error(self, status_code: int) -> None:
        self.feed_route = self._router.get(FEED_URL).mock(
            side_effect=lambda request: httpx.Response(status_code)
        )

    def _respond(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        body = self.bodies.get(url)
        if body is None:
            response = httpx.Response(404, content=b"no such CRL")
        else:
            etag = f'"{hashlib.md5(body).hexdigest()}"'
            if self.honor_etag and request.headers.get("If-None-Match") == etag:
                response = httpx.Response(304, headers={"ETag": etag})
            else:
                response = httpx.Response(200, content=body, headers={"ETag": etag})
        with self._lock:
            self.statuses[url] = response.status_code
        return response


@pytest.fixture()
def crl_server() -> Iterator[FakeCrlServer]:
    with respx.mock(assert_all_called=False) as router:
        yield FakeCrlServer(router)
