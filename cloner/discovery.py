"""
JavaScript discovery for a page: DOM, rendered DOM, raw text and build manifests
"""
import logging
import posixpath
import re
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from cloner.errors import ClonerError, format_error
from cloner.fetchers import FetchResult
from cloner.models import ClonerOptions
from cloner.sandbox import flatten_manifest

logger = logging.getLogger(__name__)

# Quoted string without whitespace ending in .js
QUOTED_JS_RE = re.compile(r'["\']([^"\'\s]+?\.js)["\']')
BUILD_MANIFEST_SUFFIX = '_buildManifest.js'
ALLOWED_SCHEMES = ('http', 'https')


def is_javascript_url(url: str) -> bool:
    return urlparse(url).path.endswith('.js')


def is_build_manifest(url: str) -> bool:
    return posixpath.basename(urlparse(url).path).endswith(BUILD_MANIFEST_SUFFIX)


def resolve_references(references: Iterable[str], base_url: str) -> List[str]:
    """Absolute http(s) URLs for `references`, in order, without duplicates"""
    urls = []
    for reference in references:
        reference = reference.strip()
        if not reference:
            continue
        try:
            url = urljoin(base_url, reference)
            scheme = urlparse(url).scheme
        except ValueError:
            continue
        if scheme in ALLOWED_SCHEMES:
            urls.append(url)
    return list(dict.fromkeys(urls))


def extract_js_urls_from_html(html: str, base_url: str) -> List[str]:
    """`<script src>` values and `.js` hrefs from the static DOM"""
    soup = BeautifulSoup(html, 'html.parser')
    references = [tag['src'] for tag in soup.find_all('script', src=True)]
    for tag in soup.find_all(href=True):
        href = tag['href']
        if isinstance(href, list):
            href = ' '.join(href)
        try:
            if is_javascript_url(urljoin(base_url, href.strip())):
                references.append(href)
        except ValueError:
            continue
    return resolve_references(references, base_url)


def extract_js_urls_from_text(text: str, base_url: str) -> List[str]:
    """Quoted `.js` strings anywhere in the raw body"""
    return resolve_references((match.group(1) for match in QUOTED_JS_RE.finditer(text)), base_url)


def resolve_manifest_entry(entry: str, manifest_url: str) -> str:
    """Resolve a manifest entry such as `static/chunks/pages/index.js`

    Entries are relative to the build directory the manifest lives in, so
    they are spliced into the manifest path at the last segment matching
    their first segment.
    """
    if entry.startswith('/'):
        return urljoin(manifest_url, entry)

    parsed = urlparse(manifest_url)
    segments = parsed.path.split('/')
    first = entry.split('/', 1)[0]
    for index in range(len(segments) - 1, 0, -1):
        if segments[index] == first:
            path = '/'.join(segments[:index] + [entry])
            return urlunparse(parsed._replace(path=path, params='', query='', fragment=''))
    return urljoin(manifest_url, entry)


async def extract_js_from_build_manifest(manifest_url: str, options: ClonerOptions) -> List[str]:
    """Chunk URLs listed by a `_buildManifest.js`; failures contribute nothing"""
    if options.sandbox is None:
        if options.verbose:
            options.logger.info(f"Skipping build manifest (no sandbox configured): {manifest_url}")
        return []

    try:
        response = await options.fetch.fetch(manifest_url, options.headers)
        manifest = await options.sandbox.evaluate(response.body, manifest_url)
    except ClonerError as e:
        options.logger.warning(f"[!] {format_error(e)}")
        return []

    entries = flatten_manifest(manifest)
    urls = resolve_references((resolve_manifest_entry(entry, response.final_url) for entry in entries),
                              response.final_url)
    if options.verbose:
        options.logger.info(f"Build manifest {manifest_url} listed {len(urls)} scripts")
    return urls


async def discover_javascript_files(url: str, options: ClonerOptions,
                                    page: Optional[FetchResult] = None) -> List[str]:
    """Every JavaScript URL referenced by `url`

    A URL that already points at a `.js` file is returned as is. Page fetch
    failures raise FetchError.
    """
    if is_javascript_url(url):
        return [url]

    if page is None:
        page = await options.fetch.fetch(url, options.headers)
    base_url = page.final_url or url

    urls = extract_js_urls_from_html(page.body, base_url)

    if options.renderer is not None:
        try:
            rendered = await options.renderer.render_script_urls(page, options)
            urls.extend(resolve_references(rendered, base_url))
        except Exception as e:
            options.logger.warning(f"[!] Rendering {base_url} failed: {format_error(e)}")

    urls.extend(extract_js_urls_from_text(page.body, base_url))
    urls = list(dict.fromkeys(urls))

    for manifest_url in [u for u in urls if is_build_manifest(u)]:
        urls.extend(await extract_js_from_build_manifest(manifest_url, options))

    urls = list(dict.fromkeys(urls))
    if options.verbose:
        options.logger.info(f"Found {len(urls)} JavaScript files on {base_url}")
    return urls
