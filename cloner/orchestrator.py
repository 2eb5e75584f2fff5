"""
Crawl orchestration: seeds -> pages -> JavaScript files -> source files
"""
import asyncio
import logging
import time
from typing import List, Optional, Sequence
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from cloner.discovery import discover_javascript_files, is_javascript_url
from cloner.errors import ClonerError, InvalidSeedURL, format_error
from cloner.fetchers import FetchResult
from cloner.models import CloneResult, ClonerOptions, SeenSet
from cloner.resolver import SourceMapResolver

logger = logging.getLogger(__name__)


def validate_seed_urls(urls: Sequence[str]):
    """Raise InvalidSeedURL unless every seed is an absolute http(s) URL"""
    if not urls:
        raise InvalidSeedURL("", {'message': 'no URLs given'})
    for url in urls:
        try:
            parsed = urlparse(url)
        except (TypeError, ValueError) as e:
            raise InvalidSeedURL(str(url), {'message': str(e)}) from e
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise InvalidSeedURL(url, {'message': 'expected an absolute http(s) URL'})


def origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}".lower()


def strip_query_and_fragment(url: str) -> str:
    return urlunparse(urlparse(url)._replace(params='', query='', fragment=''))


def extract_page_links(html: str, page_url: str, origin: str) -> List[str]:
    """Same-origin anchor targets of a page, without query or fragment"""
    soup = BeautifulSoup(html, 'html.parser')
    links = []
    for anchor in soup.find_all('a', href=True):
        href = anchor['href'].strip()
        if not href or href.startswith('#'):
            continue
        try:
            url = urljoin(page_url, href)
        except ValueError:
            continue
        if origin_of(url) != origin:
            continue
        links.append(strip_query_and_fragment(url))
    return list(dict.fromkeys(links))


class SourceMapCloner:
    """One invocation of the pipeline; owns its result and page seen-set"""

    def __init__(self, options: ClonerOptions):
        self.options = options
        self.logger = options.logger
        self.result = CloneResult(options.seed_urls, logger=options.logger, verbose=options.verbose)
        self.resolver = SourceMapResolver(options, self.result)
        self.pages = SeenSet()
        self._js_semaphore: Optional[asyncio.Semaphore] = None

    async def run(self) -> CloneResult:
        """Process every seed; per-page and per-file failures are recorded, not raised

        InvalidSeedURL is raised for a bad seed. Options belong to a single
        run: a seen-set that already holds URLs is refused with ValueError.
        """
        if len(self.options.seen):
            raise ValueError("ClonerOptions.seen is not empty; use fresh options for each run")
        validate_seed_urls(self.options.seed_urls)
        started = time.monotonic()
        self._js_semaphore = asyncio.Semaphore(self.options.js_concurrency)

        if self.options.crawl:
            await self.crawl()
        else:
            for url in self.options.seed_urls:
                await self.process_page(url)

        self.result.duration = time.monotonic() - started
        self.logger.info(
            f"[+] Extracted {self.result.total_files} files ({self.result.total_size} bytes) "
            f"in {self.result.duration:.2f}s with {len(self.result.errors)} errors"
        )
        return self.result

    async def process_page(self, url: str, page: Optional[FetchResult] = None):
        """Discover a page's scripts and resolve the ones no other page claimed"""
        self.logger.info(f"[+] Processing {url}")
        try:
            js_urls = await discover_javascript_files(url, self.options, page)
        except Exception as e:
            self.logger.error(f"[!] Failed to process {url}: {format_error(e)}")
            self.result.add_error(format_error(e), url=url)
            return

        claimed = [js_url for js_url in js_urls if self.options.seen.add(js_url)]
        if self.options.verbose and len(claimed) < len(js_urls):
            self.logger.info(f"Skipping {len(js_urls) - len(claimed)} already processed scripts on {url}")
        await asyncio.gather(*(self.process_js_file(js_url) for js_url in claimed))

    async def process_js_file(self, js_url: str):
        async with self._js_semaphore:
            try:
                files = await self.resolver.resolve(js_url)
            except Exception as e:
                self.logger.error(f"[!] Failed to process {js_url}: {format_error(e)}")
                self.result.add_error(format_error(e), file=js_url)
                return

        for source_file in files:
            self.result.add_file(source_file)

    def admit(self, url: str, queue: asyncio.Queue) -> bool:
        """Put a page on the frontier unless seen or over the page limit"""
        max_pages = self.options.max_pages
        if max_pages is not None and len(self.pages) >= max_pages:
            return False
        if not self.pages.add(url):
            return False
        queue.put_nowait(url)
        return True

    async def crawl(self):
        queue: asyncio.Queue = asyncio.Queue()
        extraction_tasks: List[asyncio.Task] = []
        origin = origin_of(self.options.root_url)

        for url in self.options.seed_urls:
            self.admit(url, queue)

        workers = [
            asyncio.create_task(self._crawl_worker(queue, origin, extraction_tasks))
            for _ in range(max(1, self.options.crawl_concurrency))
        ]
        await queue.join()
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        await asyncio.gather(*extraction_tasks)
        self.logger.info(f"[+] Crawled {len(self.pages)} pages")

    async def _crawl_worker(self, queue: asyncio.Queue, origin: str, extraction_tasks: List[asyncio.Task]):
        while True:
            url = await queue.get()
            try:
                await self.crawl_page(url, queue, origin, extraction_tasks)
            except Exception as e:
                self.logger.error(f"[!] Failed to crawl {url}: {format_error(e)}")
                self.result.add_error(format_error(e), url=url)
            finally:
                queue.task_done()

    async def crawl_page(self, url: str, queue: asyncio.Queue, origin: str, extraction_tasks: List[asyncio.Task]):
        """Fetch one page, enqueue its links and start extracting its scripts"""
        if is_javascript_url(url):
            extraction_tasks.append(asyncio.create_task(self.process_page(url)))
            return

        try:
            page = await self.options.fetch.fetch(url, self.options.headers)
        except ClonerError as e:
            self.logger.error(f"[!] Failed to fetch {url}: {format_error(e)}")
            self.result.add_error(format_error(e), url=url)
            return

        added = 0
        for link in extract_page_links(page.body, page.final_url or url, origin):
            if self.admit(link, queue):
                added += 1
        if self.options.verbose and added:
            self.logger.info(f"Queued {added} new pages from {url}")

        extraction_tasks.append(asyncio.create_task(self.process_page(url, page)))


async def clone_source_maps(urls: Sequence[str], fetch, **kwargs) -> CloneResult:
    """Run the pipeline over `urls`; keyword arguments are ClonerOptions fields"""
    options = ClonerOptions(seed_urls=list(urls), fetch=fetch, **kwargs)
    return await SourceMapCloner(options).run()


def run_clone(urls: Sequence[str], fetch, **kwargs) -> CloneResult:
    """Synchronous wrapper around clone_source_maps"""
    return asyncio.run(clone_source_maps(urls, fetch, **kwargs))
