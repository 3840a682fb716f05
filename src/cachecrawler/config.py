"""
Run configuration and defaults.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from cachecrawler.retry import RetryPolicy

# Accept header variants, from most capable browser to least
DEFAULT_ACCEPT_HEADERS: List[str] = [
    "image/avif,image/webp,image/jpeg,image/png,image/*,*/*;q=0.8",
    "image/webp,image/jpeg,image/png,image/*,*/*;q=0.8",
    "image/jpeg,image/png,image/*,*/*;q=0.8",
    "image/png,image/*,*/*;q=0.8",
]

DEFAULT_CACHE_HEADER = "x-vercel-cache"
DEFAULT_SERVER_HEADER = "x-vercel-id"
DEFAULT_USER_AGENT = "CacheCrawler/1.0"
DEFAULT_LOG_FILE = "cache-crawler.log"


@dataclass(slots=True)
class RunConfig:
    """Immutable-by-convention inputs for one audit run."""
    start_url: str
    recursive: bool = False
    accept_headers: List[str] = field(default_factory=lambda: list(DEFAULT_ACCEPT_HEADERS))
    download_images: bool = False
    download_cached: bool = True
    save_to_disk: bool = True
    images_dir: Path = Path("images")
    timeout_s: float = 15.0
    user_agent: str = DEFAULT_USER_AGENT
    workers: int = 10
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    retry_pages: bool = False
    run_timeout_s: Optional[float] = None
    cache_header: str = DEFAULT_CACHE_HEADER
    server_header: str = DEFAULT_SERVER_HEADER
