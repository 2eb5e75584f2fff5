"""
Per-bundle source map resolution

For one JavaScript URL: fetch it, find its sourceMappingURL directive,
try the directive and the `<file>.map` fallback in order, and turn the
first usable map into SourceFile entries.
"""
import logging
from typing import List, Optional
from urllib.parse import urljoin

from cloner.data_uri import decode_data_uri, is_data_uri
from cloner.errors import PathRejected, SourceMapParseError, format_error
from cloner.models import CloneResult, ClonerOptions, SourceFile
from cloner.paths import sanitize_source_path
from cloner.sourcemap import (
    ParsedSourceMap,
    fallback_source_map_url,
    find_source_mapping_url,
    looks_like_html,
    parse_source_map,
)

logger = logging.getLogger(__name__)


def source_map_candidates(js_url: str, directive: Optional[str], base_url: Optional[str] = None) -> List[str]:
    """Directive first, then the `.map` fallback, without duplicates

    The directive resolves against `base_url` (the post-redirect location
    of the bundle) when given.
    """
    candidates = []
    if directive:
        candidates.append(directive if is_data_uri(directive) else urljoin(base_url or js_url, directive))
    fallback = fallback_source_map_url(js_url)
    if fallback:
        candidates.append(fallback)
    return list(dict.fromkeys(candidates))


def extract_source_files(parsed: ParsedSourceMap, js_url: str, options: ClonerOptions,
                         result: Optional[CloneResult] = None) -> List[SourceFile]:
    """Sanitize every source that has inlined content"""
    files = []
    for index, source in enumerate(parsed.sources):
        content = parsed.content_for(index)
        if content is None:
            if options.verbose:
                options.logger.warning(f"No source content for {source}")
            continue

        try:
            path = sanitize_source_path(
                source,
                js_url=js_url,
                output_root=options.output_root,
                url_path_layout=options.url_path_layout,
            )
        except PathRejected as e:
            options.logger.error(f"[!] {e.message} (declared by {js_url})")
            if result is not None:
                result.add_error(e.message, file=js_url)
            continue

        if path is None:
            continue
        files.append(SourceFile(path=path, content=content))
        if options.verbose:
            options.logger.info(f"Extracted source: {path}")
    return files


class SourceMapResolver:
    """Resolves source maps for JavaScript URLs of one run"""

    def __init__(self, options: ClonerOptions, result: Optional[CloneResult] = None):
        self.options = options
        self.result = result

    async def load_candidate(self, candidate: str) -> str:
        """Map text for one candidate, from a data URI or over HTTP"""
        if is_data_uri(candidate):
            return decode_data_uri(candidate)
        response = await self.options.fetch.fetch(candidate, self.options.headers)
        return response.body

    def process_source_map(self, content: str, js_url: str) -> List[SourceFile]:
        """Parse a map payload; parse failures are logged, never raised"""
        try:
            parsed = parse_source_map(content, js_url)
        except SourceMapParseError as e:
            self.options.logger.error(format_error(e))
            return []

        files = extract_source_files(parsed, js_url, self.options, self.result)
        if self.options.verbose:
            self.options.logger.info(f"Extracted {len(files)} files from {js_url}")
        return files

    async def resolve(self, js_url: str) -> List[SourceFile]:
        """Source files recovered for `js_url`; FetchError if the bundle itself fails"""
        options = self.options
        response = await options.fetch.fetch(js_url, options.headers)
        directive = find_source_mapping_url(response.body)
        if options.verbose and directive:
            shown = directive if len(directive) <= 100 else directive[:97] + '...'
            options.logger.info(f"Found source map url: {shown}")

        for candidate in source_map_candidates(js_url, directive, response.final_url):
            label = 'inline data URI' if is_data_uri(candidate) else candidate
            try:
                content = await self.load_candidate(candidate)
            except Exception as e:
                if options.verbose:
                    options.logger.warning(f"Failed to fetch source map from {label}: {format_error(e)}")
                continue

            if not content or not content.strip() or looks_like_html(content):
                if options.verbose:
                    options.logger.info(f"No source map content for: {label}")
                continue

            if options.verbose:
                options.logger.info(f"Found source map content: {label}")
            files = self.process_source_map(content, js_url)
            if files:
                return files

        if self.result is not None:
            self.result.add_unmapped(js_url)
        return []
