"""
Run orchestration: crawl, deduplicate, probe every header variant, report.
"""
from __future__ import annotations

import functools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter

from cachecrawler.config import RunConfig
from cachecrawler.core import PageContent, PageFetcher, crawl_site, fetch_page
from cachecrawler.probe import CacheProbe, CacheStatus, DownloadedAsset, ProbeResult
from cachecrawler.retry import execute
from cachecrawler.storage import AssetStore, DiskStore

logger = logging.getLogger("cachecrawler")


def dedupe_images(urls: Iterable[str]) -> List[str]:
    """Distinct URL strings in first-seen order."""
    return list(dict.fromkeys(urls))


class RunState:
    """Mutable state shared by every task of one run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.visited: Set[str] = set()
        self.failed_pages: Set[str] = set()
        self.image_urls: List[str] = []
        self.server_ids: Set[str] = set()
        self.results: List[ProbeResult] = []

    def claim_page(self, url: str) -> bool:
        """Mark ``url`` visited. False if it already was."""
        with self._lock:
            if url in self.visited:
                return False
            self.visited.add(url)
            return True

    def record_page_failure(self, url: str) -> None:
        with self._lock:
            self.failed_pages.add(url)

    def add_images(self, urls: Iterable[str]) -> None:
        with self._lock:
            self.image_urls.extend(urls)

    def add_server(self, server_id: Optional[str]) -> None:
        if server_id is None:
            return
        with self._lock:
            self.server_ids.add(server_id)

    def record_probe(self, result: ProbeResult) -> None:
        with self._lock:
            self.results.append(result)
            if result.server_id is not None:
                self.server_ids.add(result.server_id)
            if result.asset is not None and result.asset.server_id is not None:
                self.server_ids.add(result.asset.server_id)


@dataclass(frozen=True, slots=True)
class RunReport:
    """Final, immutable summary of an audit run."""
    pages_visited: Tuple[str, ...]
    failed_pages: Tuple[str, ...]
    image_count: int
    header_count: int
    cached_count: int
    unknown_count: int
    server_ids: Tuple[str, ...]
    downloads: Tuple[DownloadedAsset, ...] = ()
    elapsed_s: float = 0.0

    @property
    def uncached_count(self) -> int:
        return self.image_count * self.header_count - self.cached_count

    @property
    def downloaded_bytes(self) -> int:
        return sum(asset.size for asset in self.downloads)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["uncached_count"] = self.uncached_count
        payload["downloaded_bytes"] = self.downloaded_bytes
        return payload


def build_report(state: RunState, image_count: int, header_count: int, elapsed_s: float) -> RunReport:
    cached = sum(1 for r in state.results if r.status is CacheStatus.HIT)
    unknown = sum(1 for r in state.results if r.status is CacheStatus.UNKNOWN)
    downloads = tuple(sorted(
        (r.asset for r in state.results if r.asset is not None),
        key=lambda a: (a.filename, a.accept),
    ))
    return RunReport(
        pages_visited=tuple(sorted(state.visited)),
        failed_pages=tuple(sorted(state.failed_pages)),
        image_count=image_count,
        header_count=header_count,
        cached_count=cached,
        unknown_count=unknown,
        server_ids=tuple(sorted(state.server_ids)),
        downloads=downloads,
        elapsed_s=elapsed_s,
    )


def build_session(config: RunConfig) -> requests.Session:
    """Shared HTTP session with a pool large enough for every worker."""
    session = requests.Session()
    session.headers["User-Agent"] = config.user_agent
    adapter = HTTPAdapter(pool_connections=config.workers, pool_maxsize=config.workers)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def make_page_fetcher(session: requests.Session, config: RunConfig, cancel: threading.Event) -> PageFetcher:
    fetch = functools.partial(
        fetch_page,
        session,
        follow_links=config.recursive,
        timeout_s=config.timeout_s,
        server_header=config.server_header,
    )
    if not config.retry_pages:
        return fetch

    def fetch_with_retry(url: str) -> PageContent:
        def report(attempt: int, exc: BaseException) -> None:
            logger.error("GET %s attempt %d failed: %s", url, attempt, exc)

        return execute(lambda: fetch(url), config.retry, on_failure=report, cancel=cancel)

    return fetch_with_retry


def validate_start_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError(f"Invalid start URL: {url}")


def run_audit(
    config: RunConfig,
    session: Optional[requests.Session] = None,
    store: Optional[AssetStore] = None,
    cancel: Optional[threading.Event] = None,
) -> RunReport:
    """
    Crawl the site, probe each unique image under each Accept header and
    return the report.

    Only an invalid start URL or an empty header list raises. Page and probe
    failures are logged and reflected in the report.
    """
    validate_start_url(config.start_url)
    if not config.accept_headers:
        raise ValueError("At least one Accept header is required")

    session = session or build_session(config)
    cancel = cancel or threading.Event()
    if store is None and config.download_images and config.save_to_disk:
        store = DiskStore(config.images_dir)

    timer = None
    if config.run_timeout_s is not None:
        timer = threading.Timer(config.run_timeout_s, cancel.set)
        timer.daemon = True
        timer.start()

    state = RunState()
    started = time.perf_counter()

    try:
        with ThreadPoolExecutor(max_workers=config.workers, thread_name_prefix="cachecrawler") as executor:
            crawl_site(
                config.start_url,
                make_page_fetcher(session, config, cancel),
                state,
                executor,
                recursive=config.recursive,
                cancel=cancel,
            )
            logger.info("Visited %d unique pages.", len(state.visited))

            images = dedupe_images(state.image_urls)
            logger.info("Total image urls: %d", len(images))
            logger.info("Processing image urls...")

            probe = CacheProbe(
                session,
                policy=config.retry,
                timeout_s=config.timeout_s,
                download_images=config.download_images,
                download_cached=config.download_cached,
                store=store if config.save_to_disk else None,
                cache_header=config.cache_header,
                server_header=config.server_header,
                cancel=cancel,
            )
            futures = [
                executor.submit(probe.probe, url, accept)
                for accept in config.accept_headers
                for url in images
            ]
            for future in as_completed(futures):
                state.record_probe(future.result())
    finally:
        if timer is not None:
            timer.cancel()

    if cancel.is_set():
        logger.warning("Run was cancelled before completion; results are partial.")

    report = build_report(state, len(images), len(config.accept_headers), time.perf_counter() - started)
    log_summary(report, config.download_images)
    return report


def log_summary(report: RunReport, downloaded: bool) -> None:
    """Log the end-of-run summary."""
    logger.info(
        "Visited %d urls:\n\t%s",
        len(report.pages_visited),
        "\n\t".join(report.pages_visited),
    )
    if report.failed_pages:
        logger.info("Failed pages: %d", len(report.failed_pages))
    if downloaded:
        logger.info(
            "Done.\nDownloaded %d images (%s MB)",
            len(report.downloads),
            report.downloaded_bytes / 1_000_000,
        )
    logger.info("Time elapsed: %.3f seconds.", report.elapsed_s)
    logger.info("Already cached images: %d", report.cached_count)
    logger.info("Uncached images: %d", report.uncached_count)
    if report.unknown_count:
        logger.info("Without cache status: %d", report.unknown_count)
    logger.info("Edge servers: %s", ", ".join(report.server_ids))
