"""
Source map utilities: directive lookup, fallback URLs and structural parsing
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union
from urllib.parse import unquote, urlparse, urlunparse

from cloner.data_uri import is_data_uri
from cloner.errors import SourceMapParseError

logger = logging.getLogger(__name__)

_INNER = r'\s*[#@]\s*sourceMappingURL\s*=\s*([^\s\'"]*)\s*'

# Line or block comment form; only the last occurrence in a file counts
SOURCE_MAPPING_URL_RE = re.compile(
    r'(?:/\*(?:\s*\r?\n(?://)?)?(?:' + _INNER + r')\s*\*/|//(?:' + _INNER + r'))\s*'
)

XSSI_PREFIX = ")]}'"


@dataclass
class ParsedSourceMap:
    """Index-aligned source paths and their inlined content"""
    sources: List[str] = field(default_factory=list)
    sources_content: List[Optional[str]] = field(default_factory=list)

    def content_for(self, index: int) -> Optional[str]:
        if index < len(self.sources_content):
            return self.sources_content[index]
        return None

    def __len__(self) -> int:
        return len(self.sources)


def find_source_mapping_url(code: str) -> Optional[str]:
    """Return the value of the last sourceMappingURL directive in `code`"""
    for line in reversed(code.splitlines()):
        if 'sourceMappingURL' not in line:
            continue
        match = SOURCE_MAPPING_URL_RE.search(line)
        if not match:
            continue
        value = match.group(1) or match.group(2) or ''
        if not value:
            return None
        if is_data_uri(value):
            return value
        return unquote(value)
    return None


def fallback_source_map_url(js_url: str) -> Optional[str]:
    """`<file>.js?query` -> `<file>.js.map?query`"""
    try:
        parsed = urlparse(js_url)
    except ValueError:
        return None
    if not parsed.scheme or not parsed.path.endswith('.js'):
        return None
    return urlunparse(parsed._replace(path=parsed.path + '.map', fragment=''))


def looks_like_html(body: str) -> bool:
    """Error pages and SPA fallbacks come back as HTML instead of a map"""
    return body.lstrip().startswith('<')


def _load(data: Union[str, bytes, Dict], source_url: str) -> Dict:
    if isinstance(data, dict):
        return data
    if isinstance(data, bytes):
        data = data.decode('utf-8', errors='replace')
    text = data.lstrip('\ufeff')
    if text.startswith(XSSI_PREFIX):
        text = text.split('\n', 1)[1] if '\n' in text else ''
    try:
        return json.loads(text)
    except ValueError as e:
        raise SourceMapParseError(source_url, {'message': str(e)}) from e


def _join_source_root(source_root: str, source: str) -> str:
    if not source_root or '://' in source or source.startswith('/'):
        return source
    return source_root.rstrip('/') + '/' + source


def _parse_regular(raw: Dict, source_url: str) -> ParsedSourceMap:
    if raw.get('version') not in (3, '3'):
        raise SourceMapParseError(source_url, {'message': f"Unsupported version: {raw.get('version')}"})

    sources = raw.get('sources')
    if not isinstance(sources, list):
        raise SourceMapParseError(source_url, {'message': '"sources" must be a list'})
    if not isinstance(raw.get('mappings'), str):
        raise SourceMapParseError(source_url, {'message': '"mappings" is a required string'})

    source_root = raw.get('sourceRoot')
    if not isinstance(source_root, str):
        source_root = ''

    contents = raw.get('sourcesContent')
    if not isinstance(contents, list):
        contents = []

    parsed = ParsedSourceMap()
    for index, source in enumerate(sources):
        source = source if isinstance(source, str) else ''
        content = contents[index] if index < len(contents) else None
        parsed.sources.append(_join_source_root(source_root, source))
        parsed.sources_content.append(content if isinstance(content, str) else None)
    return parsed


def parse_source_map(data: Union[str, bytes, Dict], source_url: str) -> ParsedSourceMap:
    """Parse a source map payload (text or decoded object)

    Index maps (with `sections`) are flattened. Raises SourceMapParseError
    on anything that is not a structurally valid version 3 map.
    """
    raw = _load(data, source_url)
    if not isinstance(raw, dict):
        raise SourceMapParseError(source_url, {'message': 'source map must be a JSON object'})

    if 'sections' not in raw:
        return _parse_regular(raw, source_url)

    sections = raw.get('sections')
    if not isinstance(sections, list):
        raise SourceMapParseError(source_url, {'message': '"sections" must be a list'})

    merged = ParsedSourceMap()
    for section in sections:
        section_map = section.get('map') if isinstance(section, dict) else None
        if not isinstance(section_map, dict):
            # Sections pointing at a remote `url` are not followed
            continue
        parsed = _parse_regular(section_map, source_url)
        merged.sources.extend(parsed.sources)
        merged.sources_content.extend(parsed.sources_content)
    return merged
