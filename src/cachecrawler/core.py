"""
Page fetching, image discovery and same-host site traversal.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Executor, Future, wait
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, List, Mapping, Optional
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup, SoupStrainer

from cachecrawler.config import DEFAULT_SERVER_HEADER

if TYPE_CHECKING:
    from cachecrawler.run import RunState

logger = logging.getLogger("cachecrawler")

# SoupStrainers to parse only the tags we read
IMG_STRAINER = SoupStrainer("img")
IMG_AND_LINK_STRAINER = SoupStrainer(["img", "a"])

PageFetcher = Callable[[str], "PageContent"]


@dataclass(slots=True)
class PageContent:
    """What one page contributes to the crawl."""
    url: str
    image_urls: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)
    server_id: Optional[str] = None


def resolve_url(reference: str, base: str) -> str:
    """
    Resolve a reference found on ``base`` into an absolute URL.

    Raises ValueError when ``base`` itself is not an absolute URL.
    """
    parsed = urlparse(base)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"Invalid base URL: {base}")
    return urljoin(base, reference.strip())


def parse_server_id(headers: Mapping[str, str], header_name: str) -> Optional[str]:
    """Return the edge server token (text before ``::``), or None if absent."""
    value = headers.get(header_name)
    if not value:
        return None
    return value.split("::")[0] or None


def is_data_uri(reference: str) -> bool:
    return reference.strip().lower().startswith("data:image")


def _srcset_urls(srcset: str) -> List[str]:
    """Split a srcset into its URLs, dropping width/density descriptors."""
    urls = []
    for entry in srcset.split(","):
        entry = entry.strip()
        if entry:
            urls.append(entry.split(" ")[0])
    return urls


def extract_image_urls(html: str, base: str, soup: Optional[BeautifulSoup] = None) -> List[str]:
    """Collect absolute image URLs from ``<img>`` src and srcset attributes."""
    if soup is None:
        soup = BeautifulSoup(html, "lxml", parse_only=IMG_STRAINER)

    found: List[str] = []
    for img in soup.find_all("img"):
        references = _srcset_urls(img.get("srcset") or "")
        src = img.get("src")
        if src:
            references.append(src)

        for ref in references:
            if is_data_uri(ref):
                continue
            try:
                absolute = resolve_url(ref, base)
            except ValueError as exc:
                logger.warning("Skipping malformed image reference %r on %s: %s", ref, base, exc)
                continue
            logger.debug("Image URL: %s", absolute)
            found.append(absolute)
    return found


def extract_links(html: str, base: str, soup: Optional[BeautifulSoup] = None) -> List[str]:
    """Resolve every ``<a href>`` target, with fragments stripped."""
    if soup is None:
        soup = BeautifulSoup(html, "lxml", parse_only=SoupStrainer("a", href=True))

    links: List[str] = []
    for a in soup.find_all("a", href=True):
        href = a["href"].split("#")[0]
        if not href.strip():
            continue
        try:
            links.append(resolve_url(href, base))
        except ValueError as exc:
            logger.warning("Skipping malformed link %r on %s: %s", href, base, exc)
    return links


def fetch_page(
    session: requests.Session,
    url: str,
    follow_links: bool,
    timeout_s: float,
    server_header: str = DEFAULT_SERVER_HEADER,
) -> PageContent:
    """
    Fetch one page and parse it for images and, if ``follow_links``, links.

    Network and HTTP errors propagate to the caller.
    """
    logger.debug("Visiting URL: %s", url)
    resp = session.get(url, timeout=timeout_s, allow_redirects=True)
    resp.raise_for_status()

    server_id = parse_server_id(resp.headers, server_header)

    # Only parse HTML content; a missing content type is assumed to be HTML
    content_type = (resp.headers.get("content-type") or "").lower()
    if content_type and "text/html" not in content_type:
        logger.debug("Not parsing %s: content type %r", url, content_type)
        return PageContent(url=url, server_id=server_id)

    html = resp.text
    strainer = IMG_AND_LINK_STRAINER if follow_links else IMG_STRAINER
    soup = BeautifulSoup(html, "lxml", parse_only=strainer)

    return PageContent(
        url=url,
        image_urls=extract_image_urls(html, url, soup),
        links=extract_links(html, url, soup) if follow_links else [],
        server_id=server_id,
    )


def crawl_site(
    start_url: str,
    fetch: PageFetcher,
    state: "RunState",
    executor: Executor,
    recursive: bool,
    cancel: Optional[threading.Event] = None,
) -> None:
    """
    Visit ``start_url`` and, when ``recursive``, every same-host page it reaches.

    This loop is the only place that decides what gets enqueued. A page is
    claimed in ``state`` before its fetch is submitted and stays visited even
    if the fetch fails, so each URL is fetched at most once.
    """
    base_host = urlparse(start_url).hostname
    state.claim_page(start_url)
    pending: Dict[Future, str] = {executor.submit(fetch, start_url): start_url}

    while pending:
        done, _ = wait(pending, return_when=FIRST_COMPLETED)
        for future in done:
            url = pending.pop(future)
            try:
                page = future.result()
            except Exception as exc:  # pylint: disable=broad-except
                logger.error("Failed to visit %s: %s", url, exc)
                state.record_page_failure(url)
                continue

            state.add_images(page.image_urls)
            state.add_server(page.server_id)

            if not recursive:
                continue

            for link in page.links:
                host = urlparse(link).hostname
                if host != base_host:
                    logger.debug("Skipping external URL: %s. Hostname: %s, base: %s", link, host, base_host)
                    continue
                if cancel is not None and cancel.is_set():
                    logger.debug("Run cancelled, not visiting %s", link)
                    continue
                if not state.claim_page(link):
                    logger.debug("Skipping already visited URL: %s", link)
                    continue
                pending[executor.submit(fetch, link)] = link
