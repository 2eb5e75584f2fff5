"""
Content fetchers: the only way the pipeline reaches the network
"""
import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping, Optional

import requests

from cloner.data_uri import lookup_charset
from cloner.errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15
DEFAULT_MAX_BYTES = 50 * 1024 * 1024

CHARSET_RE = re.compile(r'charset\s*=\s*["\']?([^"\';\s]+)', re.IGNORECASE)


@dataclass(frozen=True)
class FetchResult:
    body: str
    status_code: int
    final_url: str


class ContentFetcher(ABC):
    """Fetch capability injected into the pipeline"""

    @abstractmethod
    async def fetch(self, url: str, headers: Optional[Mapping[str, str]] = None) -> FetchResult:
        """Fetch `url` following redirects; raise FetchError on failure"""

    async def close(self):
        """Release any resources held by the fetcher"""


def decode_body(content: bytes, content_type: str) -> str:
    """Decode with the declared charset, UTF-8 otherwise"""
    match = CHARSET_RE.search(content_type or '')
    encoding = lookup_charset(match.group(1) if match else None)
    return content.decode(encoding, errors='replace')


class RequestsFetcher(ContentFetcher):
    """In-process fetcher built on a shared requests.Session"""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, max_bytes: int = DEFAULT_MAX_BYTES,
                 verify: bool = True, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.verify = verify
        self.session = session or requests.Session()

    def _get(self, url: str, headers: Optional[Mapping[str, str]]) -> FetchResult:
        try:
            resp = self.session.get(
                url,
                headers=dict(headers or {}),
                timeout=self.timeout,
                stream=True,
                allow_redirects=True,
                verify=self.verify,
            )
        except requests.RequestException as e:
            raise FetchError(url, details={'message': str(e)}) from e

        try:
            if resp.status_code >= 400:
                raise FetchError(url, resp.status_code, {'message': resp.reason})

            content_length = resp.headers.get('Content-Length')
            if content_length and content_length.isdigit() and int(content_length) > self.max_bytes:
                raise FetchError(url, details={'message': f"too large ({content_length} bytes)"})

            chunks = []
            received = 0
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                received += len(chunk)
                if received > self.max_bytes:
                    raise FetchError(url, details={'message': f"too large (over {self.max_bytes} bytes)"})
                chunks.append(chunk)
        except requests.RequestException as e:
            raise FetchError(url, details={'message': str(e)}) from e
        finally:
            resp.close()

        body = decode_body(b''.join(chunks), resp.headers.get('Content-Type', ''))
        return FetchResult(body=body, status_code=resp.status_code, final_url=resp.url or url)

    async def fetch(self, url: str, headers: Optional[Mapping[str, str]] = None) -> FetchResult:
        return await asyncio.to_thread(self._get, url, headers)

    async def close(self):
        self.session.close()


class BrowserFetcher(ContentFetcher):
    """Script-executing fetcher: HTML bodies are the DOM after scripts ran"""

    def __init__(self, browser_session, timeout: float = DEFAULT_TIMEOUT,
                 wait_until: str = "load", settle: float = 0.5):
        self.browser_session = browser_session
        self.timeout = timeout
        self.wait_until = wait_until
        self.settle = settle

    async def fetch(self, url: str, headers: Optional[Mapping[str, str]] = None) -> FetchResult:
        context = await self.browser_session.new_context(extra_http_headers=dict(headers or {}))
        try:
            page = await context.new_page()
            try:
                response = await page.goto(url, wait_until=self.wait_until, timeout=self.timeout * 1000)
            except Exception as e:
                raise FetchError(url, details={'message': str(e)}) from e

            if response is None:
                raise FetchError(url, details={'message': 'no response'})
            if response.status >= 400:
                raise FetchError(url, response.status, {'message': response.status_text})

            content_type = (await response.all_headers()).get('content-type', '').lower()
            if 'html' in content_type:
                if self.settle:
                    await asyncio.sleep(self.settle)
                body = await page.content()
            else:
                body = decode_body(await response.body(), content_type)

            return FetchResult(body=body, status_code=response.status, final_url=page.url or url)
        finally:
            await context.close()

    async def close(self):
        await self.browser_session.close()
