"""
Command-line interface for the cache crawler.
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from cachecrawler.config import DEFAULT_ACCEPT_HEADERS, DEFAULT_LOG_FILE, DEFAULT_USER_AGENT, RunConfig
from cachecrawler.log import LEVELS, setup_logging
from cachecrawler.retry import RetryPolicy
from cachecrawler.run import RunReport, run_audit


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Crawl a site, collect its image URLs and check how many are cached at the CDN edge."
    )
    parser.add_argument("start_url", help="Start URL (e.g. https://example.com)")
    parser.add_argument("--recursive", action="store_true", help="Follow links to other pages on the same host")
    parser.add_argument(
        "--accept",
        action="append",
        metavar="VALUE",
        help="Accept header variant to probe with; repeat for several (default: AVIF, WebP, JPEG and PNG variants)",
    )
    parser.add_argument("--download", action="store_true", help="Download image bodies after probing")
    parser.add_argument("--skip-cached", action="store_true", help="Only download images that were not cached")
    parser.add_argument("--no-save", action="store_true", help="Download without writing files to disk")
    parser.add_argument("--images-dir", default="images", help="Directory for downloaded images (default: images)")
    parser.add_argument("--workers", type=int, default=10, help="Maximum concurrent requests (default: 10)")
    parser.add_argument("--timeout", type=float, default=15.0, help="Request timeout in seconds (default: 15)")
    parser.add_argument("--user-agent", default=DEFAULT_USER_AGENT, help="User-Agent header")
    parser.add_argument("--retry-pages", action="store_true", help="Retry failed page fetches like image probes")
    parser.add_argument("--max-attempts", type=int, default=5, help="Attempts per request before giving up (default: 5)")
    parser.add_argument("--run-timeout", type=float, help="Stop starting new requests after this many seconds")
    parser.add_argument("--log-level", default="info", choices=sorted(LEVELS), help="Log level (default: info)")
    parser.add_argument("--log-file", default=DEFAULT_LOG_FILE, help=f"Log file path (default: {DEFAULT_LOG_FILE})")
    parser.add_argument("--no-log-file", action="store_true", help="Do not write a log file")
    parser.add_argument("--quiet", action="store_true", help="Do not log to the console")
    parser.add_argument("--out", help="Write the report as JSON to this path, or '-' for stdout")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON")
    return parser


def config_from_args(args: argparse.Namespace) -> RunConfig:
    """Translate parsed arguments into a RunConfig."""
    return RunConfig(
        start_url=args.start_url,
        recursive=args.recursive,
        accept_headers=args.accept or list(DEFAULT_ACCEPT_HEADERS),
        download_images=args.download,
        download_cached=not args.skip_cached,
        save_to_disk=not args.no_save,
        images_dir=Path(args.images_dir),
        timeout_s=args.timeout,
        user_agent=args.user_agent,
        workers=max(1, args.workers),
        retry=RetryPolicy(max_attempts=max(1, args.max_attempts)),
        retry_pages=args.retry_pages,
        run_timeout_s=args.run_timeout,
    )


def write_report(report: RunReport, out: str, pretty: bool) -> None:
    json_text = json.dumps(report.to_dict(), ensure_ascii=False, indent=2 if pretty else None)

    if out == "-":
        print(json_text)
        return

    output_path = Path(out)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json_text, encoding="utf-8")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the cache crawler CLI."""
    args = build_parser().parse_args(argv)

    setup_logging(
        level=args.log_level,
        console=not args.quiet,
        log_file=None if args.no_log_file else Path(args.log_file),
    )

    try:
        report = run_audit(config_from_args(args))
    except ValueError as e:
        sys.stderr.write(f"error: {e}\n")
        return 2

    if args.out:
        write_report(report, args.out, args.pretty)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
