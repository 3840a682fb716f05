"""
Cache status probing and optional download of image assets.
"""
from __future__ import annotations

import enum
import logging
import re
import threading
from dataclasses import dataclass
from typing import Optional

import requests

from cachecrawler.config import DEFAULT_CACHE_HEADER, DEFAULT_SERVER_HEADER
from cachecrawler.core import parse_server_id
from cachecrawler.log import SUCCESS
from cachecrawler.retry import RetryPolicy, execute
from cachecrawler.storage import AssetStore

logger = logging.getLogger("cachecrawler")

UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._=&+-]+")


class CacheStatus(str, enum.Enum):
    HIT = "HIT"
    MISS = "MISS"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True, slots=True)
class DownloadedAsset:
    """An image body fetched with a given Accept header."""
    url: str
    accept: str
    filename: str
    extension: str
    size: int
    written: bool
    server_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of probing one (image URL, Accept header) pair."""
    url: str
    accept: str
    status: CacheStatus
    cache_header: Optional[str] = None
    server_id: Optional[str] = None
    asset: Optional[DownloadedAsset] = None
    error: Optional[str] = None

    @property
    def cached(self) -> bool:
        return self.status is CacheStatus.HIT


def classify(cache_header: Optional[str]) -> CacheStatus:
    """``HIT`` is cached, any other value is not, no header is unknown."""
    if cache_header is None:
        return CacheStatus.UNKNOWN
    return CacheStatus.HIT if cache_header == "HIT" else CacheStatus.MISS


def extension_for(content_type: Optional[str]) -> str:
    """Content-Type subtype without parameters, e.g. ``image/webp`` -> ``webp``."""
    if not content_type or "/" not in content_type:
        return "bin"
    subtype = content_type.split(";")[0].split("/", 1)[1].strip().lower()
    return subtype or "bin"


def filename_for(url: str, extension: str) -> str:
    """Last ``/`` segment of the URL, made safe for the filesystem, plus extension."""
    segment = url.rstrip("/").split("/")[-1]
    safe = UNSAFE_FILENAME_CHARS.sub("_", segment).strip("._") or "image"
    return f"{safe}.{extension}"


class CacheProbe:
    """
    Probe image URLs for edge cache status.

    A HEAD request reads the cache-status header. Depending on configuration a
    GET follows to materialise the bytes, which are handed to ``store``.
    Both requests run under the retry policy. ``probe`` never raises: a pair
    that cannot be probed comes back as UNKNOWN with ``error`` set.
    """

    def __init__(
        self,
        session: requests.Session,
        policy: RetryPolicy = RetryPolicy(),
        timeout_s: float = 15.0,
        download_images: bool = False,
        download_cached: bool = True,
        store: Optional[AssetStore] = None,
        cache_header: str = DEFAULT_CACHE_HEADER,
        server_header: str = DEFAULT_SERVER_HEADER,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.session = session
        self.policy = policy
        self.timeout_s = timeout_s
        self.download_images = download_images
        self.download_cached = download_cached
        self.store = store
        self.cache_header = cache_header
        self.server_header = server_header
        self.cancel = cancel

    def _request(self, method: str, url: str, accept: str) -> requests.Response:
        def send() -> requests.Response:
            resp = self.session.request(
                method,
                url,
                headers={"Accept": accept},
                timeout=self.timeout_s,
                allow_redirects=True,
            )
            resp.raise_for_status()
            return resp

        def report(attempt: int, exc: BaseException) -> None:
            logger.error("%s %s attempt %d failed: %s", method, url, attempt, exc)

        return execute(send, self.policy, on_failure=report, cancel=self.cancel)

    def probe(self, url: str, accept: str) -> ProbeResult:
        if self.cancel is not None and self.cancel.is_set():
            return ProbeResult(url, accept, CacheStatus.UNKNOWN, error="cancelled")

        logger.debug("Checking HEAD %s", url)
        try:
            head = self._request("HEAD", url, accept)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to probe %s: %s", url, exc)
            return ProbeResult(url, accept, CacheStatus.UNKNOWN, error=str(exc))

        cache_value = head.headers.get(self.cache_header)
        status = classify(cache_value)
        server_id = parse_server_id(head.headers, self.server_header)

        if status is CacheStatus.HIT:
            logger.log(SUCCESS, "File %s is cached.", url)
        else:
            logger.warning("File %s is not cached (%s).", url, cache_value or "no cache header")

        asset = None
        error = None
        if self.download_images and (status is not CacheStatus.HIT or self.download_cached):
            try:
                asset = self._download(url, accept)
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Failed to download %s: %s", url, exc)
                error = str(exc)

        return ProbeResult(url, accept, status, cache_value, server_id, asset, error)

    def _download(self, url: str, accept: str) -> DownloadedAsset:
        logger.debug("Downloading %s", url)
        resp = self._request("GET", url, accept)
        data = resp.content

        extension = extension_for(resp.headers.get("content-type"))
        filename = filename_for(url, extension)
        written = False

        if self.store is not None:
            if self.store.exists(filename) == len(data):
                logger.debug("File %s already exists with the same size. Skipping...", filename)
            else:
                self.store.write(filename, data)
                written = True

        logger.warning("Downloaded %s", filename)
        return DownloadedAsset(
            url=url,
            accept=accept,
            filename=filename,
            extension=extension,
            size=len(data),
            written=written,
            server_id=parse_server_id(resp.headers, self.server_header),
        )
