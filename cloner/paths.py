"""
Turning untrusted source-map paths into safe virtual output paths

Every `sources[]` entry of a source map is attacker-controlled. The rules
below strip bundler pseudo-schemes, optionally lay files out under the
URL path of the bundle that declared them, and remove any parent-directory
traversal before the result is checked against the output root.
"""
import logging
import posixpath
import re
from typing import Optional
from urllib.parse import urlparse

from cloner.errors import PathRejected

logger = logging.getLogger(__name__)

SYNTHETIC_PREFIX = '[synthetic:'
WEBPACK_PREFIX_RE = re.compile(r'^webpack://[^/]*/')
SCHEME_PREFIX_RE = re.compile(r'^[A-Za-z][A-Za-z0-9+.\-]*://')
LEADING_PARENTS_RE = re.compile(r'^(?:\.\./)+')
# `segment/../` where segment is not itself `..`
PARENT_PAIR_RE = re.compile(r'(?:(?<=/)|^)(?!\.\./)[^/]+/\.\./')
MULTI_SLASH_RE = re.compile(r'/{2,}')

MAX_SANITIZE_PASSES = 256
VIRTUAL_ROOT = '/__output__'


def is_synthetic(source: str) -> bool:
    return source.startswith(SYNTHETIC_PREFIX)


def strip_source_prefix(source: str) -> str:
    """Drop `webpack://<app-id>/` and any other `scheme://` prefix"""
    value = source.replace('\\', '/')
    value = WEBPACK_PREFIX_RE.sub('', value, count=1)
    value = SCHEME_PREFIX_RE.sub('', value, count=1)
    return value


def clamp_parent_climbs(value: str, context: str) -> str:
    """Discard leading `../` beyond the directory depth of `context`"""
    available = len([segment for segment in context.split('/') if segment])
    match = LEADING_PARENTS_RE.match(value)
    if not match:
        return value
    climbs = len(match.group(0)) // 3
    if climbs <= available:
        return value
    return '../' * max(available, 0) + value[match.end():]


def apply_url_path_layout(value: str, js_url: Optional[str]) -> str:
    """Prefix `value` with the directory of the bundle URL that declared it

    Absolute values are laid out from the URL root.
    """
    if value.startswith('/') or not js_url:
        return value
    context = posixpath.dirname(urlparse(js_url).path)
    value = clamp_parent_climbs(value, context)
    return context.rstrip('/') + '/' + value


def collapse_traversal(value: str, source: str = '') -> str:
    """Remove `../` by repeatedly stripping a leading one and collapsing pairs

    Bounded by MAX_SANITIZE_PASSES; pathological inputs are rejected.
    """
    value = MULTI_SLASH_RE.sub('/', value).lstrip('/')
    for _ in range(MAX_SANITIZE_PASSES):
        previous = value
        if value.startswith('../'):
            value = value[3:]
        value = PARENT_PAIR_RE.sub('', value)
        if value == previous:
            return value
    raise PathRejected(source or value, f"traversal not resolved after {MAX_SANITIZE_PASSES} passes")


def _output_anchor(output_root: str) -> str:
    return posixpath.normpath(posixpath.join(VIRTUAL_ROOT, (output_root or '.').lstrip('/')))


def contain(value: str, output_root: str = '.') -> Optional[str]:
    """Join onto the output root; the relative path if it stays inside, else None"""
    anchor = _output_anchor(output_root)
    joined = posixpath.normpath(anchor + '/' + value)
    if joined == anchor:
        return ''
    if not joined.startswith(anchor + '/'):
        return None
    return joined[len(anchor) + 1:]


def sanitize_source_path(source: str, js_url: Optional[str] = None, output_root: str = '.',
                         url_path_layout: bool = False) -> Optional[str]:
    """Safe, forward-slash path relative to the output root

    Returns None for synthetic entries that name no file and raises
    PathRejected for anything that cannot be made safe.
    """
    if is_synthetic(source):
        return None

    if '\x00' in source:
        raise PathRejected(source, "contains a NUL byte")

    value = strip_source_prefix(source)
    if not value.strip('/'):
        raise PathRejected(source, "empty after stripping scheme")

    if url_path_layout:
        value = apply_url_path_layout(value, js_url)

    value = collapse_traversal(value, source)

    relative = contain(value, output_root)
    if relative is None:
        # Escaping paths get one retry with every `..` removed
        relative = contain(value.replace('..', ''), output_root)
        if relative is None:
            raise PathRejected(source, "escapes the output root")

    relative = relative.rstrip('/')
    if not relative:
        raise PathRejected(source, "resolves to the output root itself")
    return relative
