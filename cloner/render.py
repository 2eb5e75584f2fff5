"""
Script execution of fetched pages to materialize injected <script> tags
"""
import asyncio
import logging
from typing import List

from cloner.errors import ClonerError
from cloner.fetchers import FetchResult

logger = logging.getLogger(__name__)

DEFAULT_RENDER_TIMEOUT = 15.0

COLLECT_SCRIPTS_JS = """
() => {
    const urls = Array.from(document.scripts).map(s => s.src).filter(Boolean);
    document.querySelectorAll('[href]').forEach(el => {
        const href = el.href && el.href.baseVal !== undefined ? el.href.baseVal : el.href;
        if (!href) return;
        try {
            if (new URL(href, document.baseURI).pathname.endsWith('.js')) urls.push(href);
        } catch (e) {}
    });
    return [...new Set(urls)];
}
"""


class ScriptRenderer:
    """Loads a page in Chromium with every request served by the injected fetcher

    Only the document itself and scripts are loaded; images, styles, fonts and
    XHR are aborted.
    """

    def __init__(self, browser_session, timeout: float = DEFAULT_RENDER_TIMEOUT, settle: float = 1.0):
        self.browser_session = browser_session
        self.timeout = timeout
        self.settle = settle

    async def render_script_urls(self, page_result: FetchResult, options) -> List[str]:
        """Script URLs present in the DOM once the page's scripts have run"""
        document_url = page_result.final_url

        async def route_handler(route):
            request = route.request
            if request.url == document_url and request.resource_type == 'document':
                await route.fulfill(status=200, content_type='text/html; charset=utf-8', body=page_result.body)
                return
            if request.resource_type != 'script':
                await route.abort()
                return
            try:
                response = await options.fetch.fetch(request.url, options.headers)
            except ClonerError as e:
                if options.verbose:
                    options.logger.warning(f"Renderer could not load {request.url}: {e.message}")
                await route.abort()
                return
            await route.fulfill(status=200, content_type='application/javascript; charset=utf-8', body=response.body)

        context = await self.browser_session.new_context(service_workers='block')
        try:
            await context.route('**/*', route_handler)
            page = await context.new_page()
            await page.goto(document_url, wait_until='load', timeout=self.timeout * 1000)
            if self.settle:
                await asyncio.sleep(self.settle)
            urls = await page.evaluate(COLLECT_SCRIPTS_JS)
        finally:
            await context.close()

        logger.debug(f"Renderer found {len(urls)} script URLs on {document_url}")
        return [url for url in urls if isinstance(url, str)]
