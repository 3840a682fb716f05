"""Shared fixtures: an in-memory stand-in for ``requests.Session``."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from cachecrawler.retry import RetryPolicy


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
        body: bytes = b"",
        text: Optional[str] = None,
    ) -> None:
        self.status_code = status_code
        self.headers = CaseInsensitiveDict(headers or {})
        self.content = text.encode("utf-8") if text is not None else body

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


Handler = Union[FakeResponse, BaseException, Callable[[Dict[str, str]], FakeResponse]]


class FakeSession:
    """Routes (method, url) to canned responses, exceptions or callables."""

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], Handler] = {}
        self.calls: List[Tuple[str, str, Dict[str, str]]] = []
        self._lock = threading.Lock()

    def add(self, method: str, url: str, handler: Handler) -> None:
        self.routes[(method.upper(), url)] = handler

    def request(self, method: str, url: str, headers: Optional[Dict[str, str]] = None, **kwargs: Any) -> FakeResponse:
        method = method.upper()
        headers = dict(headers or {})
        with self._lock:
            self.calls.append((method, url, headers))

        handler = self.routes.get((method, url))
        if handler is None:
            return FakeResponse(404)
        if isinstance(handler, BaseException):
            raise handler
        if callable(handler):
            return handler(headers)
        return handler

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self.request("GET", url, **kwargs)

    def head(self, url: str, **kwargs: Any) -> FakeResponse:
        return self.request("HEAD", url, **kwargs)

    def count(self, method: str, url: str) -> int:
        return sum(1 for m, u, _ in self.calls if m == method and u == url)


def html_page(html: str, server: Optional[str] = "fra1::page") -> FakeResponse:
    headers = {"content-type": "text/html; charset=utf-8"}
    if server:
        headers["x-vercel-id"] = server
    return FakeResponse(200, headers, text=html)


def image_head(cache: Optional[str], server: Optional[str] = "iad1::img") -> FakeResponse:
    headers = {"content-type": "image/webp"}
    if cache is not None:
        headers["x-vercel-cache"] = cache
    if server:
        headers["x-vercel-id"] = server
    return FakeResponse(200, headers)


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0)


@pytest.fixture(autouse=True)
def _reset_package_logger():
    yield
    logger = logging.getLogger("cachecrawler")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
