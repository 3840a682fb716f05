"""
Edge cache auditor: crawls a site for image URLs and probes each one under
several Accept headers to see whether the CDN serves it from cache.
"""
from cachecrawler.core import PageContent, crawl_site, fetch_page, resolve_url
from cachecrawler.probe import CacheProbe, CacheStatus, ProbeResult
from cachecrawler.retry import RetryPolicy, execute
from cachecrawler.run import RunReport, RunState, run_audit

__version__ = "1.0.0"
__all__ = [
    "CacheProbe",
    "CacheStatus",
    "PageContent",
    "ProbeResult",
    "RetryPolicy",
    "RunReport",
    "RunState",
    "crawl_site",
    "execute",
    "fetch_page",
    "resolve_url",
    "run_audit",
]
