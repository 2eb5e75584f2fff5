#!/usr/bin/env python3
"""
sourcemap-cloner - recover original sources from a site's public source maps
"""
import argparse
import asyncio
import logging
import sys
from typing import Dict, List, Optional
from urllib.parse import urlparse

from cloner.browser import PLAYWRIGHT_AVAILABLE, BrowserSession
from cloner.errors import InvalidSeedURL, format_error
from cloner.fetchers import DEFAULT_MAX_BYTES, DEFAULT_TIMEOUT, BrowserFetcher, RequestsFetcher
from cloner.models import DEFAULT_CRAWL_CONCURRENCY, DEFAULT_JS_CONCURRENCY, CloneResult, ClonerOptions
from cloner.orchestrator import SourceMapCloner
from cloner.render import ScriptRenderer
from cloner.sandbox import DEFAULT_MANIFEST_TIMEOUT, ManifestSandbox
from cloner.writer import ResultWriter

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'User-Agent': (
        'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
        '(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36'
    ),
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
}


def parse_headers(values: Optional[List[str]]) -> Dict[str, str]:
    """`Name: Value` strings -> header dict; ValueError on malformed input"""
    headers = {}
    for value in values or []:
        name, sep, content = value.partition(':')
        name = name.strip()
        if not sep or not name or any(c.isspace() for c in name):
            raise ValueError(f"Invalid header (expected 'Name: Value'): {value!r}")
        headers[name] = content.strip()
    return headers


def merge_headers(user_headers: Dict[str, str]) -> Dict[str, str]:
    """Browser-like defaults overridden case-insensitively by user headers"""
    overridden = {name.lower() for name in user_headers}
    headers = {k: v for k, v in DEFAULT_HEADERS.items() if k.lower() not in overridden}
    headers.update(user_headers)
    return headers


def default_output_dir(url: str) -> str:
    """Output directory named after the first seed's host"""
    try:
        host = urlparse(url).hostname
    except ValueError:
        host = None
    return host or 'output'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='sourcemap-cloner - recover original sources from published source maps',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Clone the sources behind one page
  python main.py https://example.com

  # Crawl the whole site and write a zip
  python main.py https://example.com --crawl --zip example.zip

  # Send a cookie and lay files out by bundle URL path
  python main.py https://example.com -H "Cookie: session=abc" -p
        """
    )

    parser.add_argument('urls', nargs='+', help='Page or JavaScript URL(s) to process')
    parser.add_argument('--crawl', '-c', action='store_true',
                        help='Follow same-origin links from the seed pages')
    parser.add_argument('--header', '-H', action='append', dest='headers', metavar='"Name: Value"',
                        help='Extra request header (repeatable)')

    # Output options
    parser.add_argument('--dir', '-d', dest='output_dir',
                        help='Output directory (default: hostname of the first URL)')
    parser.add_argument('--zip', '-z', help='Write the recovered files to a zip archive instead')
    parser.add_argument('--summary', help='Write a JSON run summary to this path')
    parser.add_argument('--dry-run', action='store_true',
                        help='List the files that would be written without writing them')
    parser.add_argument('--url-path-layout', '-p', action='store_true',
                        help='Place sources under the URL path of the bundle that declared them')

    # Browser options
    parser.add_argument('--browser', action='store_true',
                        help='Fetch with headless Chromium instead of plain HTTP')
    parser.add_argument('--no-render', action='store_true',
                        help='Do not execute page scripts to find dynamically injected bundles')
    parser.add_argument('--no-manifest', action='store_true',
                        help='Do not execute _buildManifest.js files')

    # Limits
    parser.add_argument('--max-pages', type=int, default=None,
                        help='Maximum number of pages to crawl (default: unlimited)')
    parser.add_argument('--concurrency', type=int, default=DEFAULT_JS_CONCURRENCY,
                        help=f'Concurrent JavaScript files (default: {DEFAULT_JS_CONCURRENCY})')
    parser.add_argument('--crawl-concurrency', type=int, default=DEFAULT_CRAWL_CONCURRENCY,
                        help=f'Concurrent crawl workers (default: {DEFAULT_CRAWL_CONCURRENCY})')
    parser.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT,
                        help=f'Request timeout in seconds (default: {DEFAULT_TIMEOUT})')
    parser.add_argument('--manifest-timeout', type=float, default=DEFAULT_MANIFEST_TIMEOUT,
                        help=f'Build manifest time budget in seconds (default: {DEFAULT_MANIFEST_TIMEOUT})')
    parser.add_argument('--max-bytes', type=int, default=DEFAULT_MAX_BYTES,
                        help='Maximum response size in bytes (default: 50MB)')
    parser.add_argument('--insecure', '-k', action='store_true',
                        help='Skip TLS certificate verification')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose logging')
    return parser


async def clone(args, headers: Dict[str, str]) -> CloneResult:
    """Wire fetchers, renderer and sandbox together and run the pipeline"""
    needs_browser = args.browser or not args.no_render or not args.no_manifest
    browser_session = None
    if needs_browser and PLAYWRIGHT_AVAILABLE:
        browser_session = BrowserSession(ignore_https_errors=args.insecure)

    if args.browser:
        fetcher = BrowserFetcher(browser_session, timeout=args.timeout)
    else:
        fetcher = RequestsFetcher(timeout=args.timeout, max_bytes=args.max_bytes, verify=not args.insecure)

    sandbox = None
    if not args.no_manifest:
        if browser_session is not None:
            sandbox = ManifestSandbox(browser_session, timeout=args.manifest_timeout)
        else:
            logger.warning("[!] Playwright not available, build manifests will be skipped")

    renderer = None
    if not args.no_render:
        if browser_session is not None:
            renderer = ScriptRenderer(browser_session, timeout=args.timeout)
        else:
            logger.warning("[!] Playwright not available, injected scripts will not be discovered")

    options = ClonerOptions(
        seed_urls=args.urls,
        fetch=fetcher,
        headers=headers,
        crawl=args.crawl,
        verbose=args.verbose,
        logger=logging.getLogger('cloner'),
        url_path_layout=args.url_path_layout,
        output_root=args.output_dir,
        renderer=renderer,
        sandbox=sandbox,
        js_concurrency=args.concurrency,
        crawl_concurrency=args.crawl_concurrency,
        max_pages=args.max_pages,
    )
    try:
        return await SourceMapCloner(options).run()
    finally:
        await fetcher.close()
        if browser_session is not None:
            await browser_session.close()


def print_summary(result: CloneResult, destination: str):
    print("\n" + "=" * 70)
    print("CLONE SUMMARY")
    print("=" * 70)
    print(f"URLs: {', '.join(result.urls)}")
    print(f"Files recovered: {result.total_files}")
    print(f"Total size: {result.total_size} bytes")
    print(f"Duration: {result.duration:.2f}s")
    print(f"Scripts without a usable source map: {len(result.unmapped)}")
    if result.conflicts:
        print(f"Conflicting paths (first version kept): {len(result.conflicts)}")
    print(f"Errors: {len(result.errors)}")
    for error in result.errors[:10]:
        where = error.url or error.file
        print(f"  [!] {error.message}" + (f" ({where})" if where else ""))
    if len(result.errors) > 10:
        print(f"  ... and {len(result.errors) - 10} more")
    print("=" * 70)
    print(f"\nOutput: {destination}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(message)s'
    )

    try:
        headers = merge_headers(parse_headers(args.headers))
    except ValueError as e:
        parser.error(str(e))

    if args.browser and not PLAYWRIGHT_AVAILABLE:
        parser.error("--browser needs Playwright: pip install playwright && playwright install chromium")

    if not args.output_dir:
        args.output_dir = default_output_dir(args.urls[0])

    try:
        result = asyncio.run(clone(args, headers))
    except InvalidSeedURL as e:
        logger.error(f"[!] {format_error(e)}")
        return 1
    except KeyboardInterrupt:
        print("\n[*] Interrupted. Exiting...")
        return 1

    writer = ResultWriter(args.output_dir)
    if args.dry_run:
        writer.dry_run(result)
        destination = f"{args.output_dir} (dry run)"
    elif args.zip:
        writer.write_zip(result, args.zip)
        destination = args.zip
    else:
        writer.write_directory(result)
        destination = args.output_dir

    if args.summary:
        writer.write_summary(result, args.summary)

    print_summary(result, destination)
    return 0


if __name__ == '__main__':
    sys.exit(main())
