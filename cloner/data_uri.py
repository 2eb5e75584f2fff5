"""
data: URI decoding for inline source maps
"""
import base64
import binascii
import codecs
import re
from dataclasses import dataclass, field
from typing import Dict, Optional
from urllib.parse import unquote_to_bytes

BASE64_SUFFIX_RE = re.compile(r'^(.*?)\s*;\s*base64\s*$', re.IGNORECASE | re.DOTALL)
TOKEN_RE = re.compile(r"^[-!#$%&'*+.^_`|~A-Za-z0-9]+$")
HTTP_WHITESPACE = ' \t\n\r\f'

# WHATWG Encoding labels whose Python codec differs from the label's own name
WHATWG_LABELS = {
    **dict.fromkeys((
        'ascii', 'us-ascii', 'ansi_x3.4-1968', 'cp819', 'ibm819', 'csisolatin1',
        'iso-8859-1', 'iso8859-1', 'iso88591', 'iso_8859-1', 'iso_8859-1:1987',
        'iso-ir-100', 'l1', 'latin1', 'cp1252', 'x-cp1252', 'windows-1252',
    ), 'cp1252'),
    **dict.fromkeys(('iso-8859-9', 'iso8859-9', 'iso_8859-9', 'l5', 'latin5', 'windows-1254'), 'cp1254'),
    **dict.fromkeys(('iso-8859-11', 'iso8859-11', 'tis-620', 'windows-874', 'dos-874'), 'cp874'),
    **dict.fromkeys(('unicode-1-1-utf-8', 'unicode11utf8', 'unicode20utf8', 'utf8', 'x-unicode20utf8'), 'utf-8'),
    **dict.fromkeys(('utf-16', 'utf-16le', 'unicode', 'ucs-2', 'csunicode', 'unicodefeff'), 'utf-16-le'),
    **dict.fromkeys(('utf-16be', 'unicodefffe'), 'utf-16-be'),
    **dict.fromkeys(('gb2312', 'gbk', 'chinese', 'csgb2312', 'x-gbk', 'gb_2312-80'), 'gb18030'),
    **dict.fromkeys(('euc-kr', 'ks_c_5601-1987', 'korean', 'cseuckr', 'windows-949'), 'cp949'),
    **dict.fromkeys(('shift_jis', 'shift-jis', 'sjis', 'ms_kanji', 'x-sjis', 'windows-31j'), 'cp932'),
    **dict.fromkeys(('big5', 'big5-hkscs', 'cn-big5', 'csbig5', 'x-x-big5'), 'big5hkscs'),
}


@dataclass
class DataURI:
    mime_type: str = ''
    parameters: Dict[str, str] = field(default_factory=dict)
    is_base64: bool = False
    body: bytes = b''

    @property
    def charset(self) -> Optional[str]:
        return self.parameters.get('charset')


def is_data_uri(value: str) -> bool:
    return value[:5].lower() == 'data:'


def _parse_parameters(raw: str) -> Dict[str, str]:
    params = {}
    for part in raw.split(';'):
        name, sep, value = part.partition('=')
        name = name.strip(HTTP_WHITESPACE).lower()
        if not sep or not name or not TOKEN_RE.match(name):
            continue
        value = value.strip(HTTP_WHITESPACE)
        if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
            value = re.sub(r'\\(.)', r'\1', value[1:-1])
        if value and name not in params:
            params[name] = value
    return params


def parse_data_uri(uri: str) -> Optional[DataURI]:
    """Split a data: URI into media type, parameters and decoded body bytes"""
    if not is_data_uri(uri):
        return None

    rest = uri[5:].split('#', 1)[0]
    media_type, comma, encoded_body = rest.partition(',')
    if not comma:
        return None

    media_type = media_type.strip(HTTP_WHITESPACE)
    body = unquote_to_bytes(encoded_body)

    result = DataURI()
    base64_match = BASE64_SUFFIX_RE.match(media_type)
    if base64_match:
        compact = re.sub(rb'[\t\n\f\r ]', b'', body)
        compact += b'=' * (-len(compact) % 4)
        try:
            body = base64.b64decode(compact, validate=True)
        except (binascii.Error, ValueError):
            return None
        media_type = base64_match.group(1)
        result.is_base64 = True
    result.body = body

    if media_type.startswith(';'):
        media_type = 'text/plain' + media_type

    essence, _, raw_params = media_type.partition(';')
    type_, slash, subtype = essence.strip(HTTP_WHITESPACE).partition('/')
    subtype = subtype.strip(HTTP_WHITESPACE)
    if slash and TOKEN_RE.match(type_) and TOKEN_RE.match(subtype):
        result.mime_type = f"{type_.lower()}/{subtype.lower()}"
        result.parameters = _parse_parameters(raw_params)
    else:
        result.mime_type = 'text/plain'
    return result


def lookup_charset(label: Optional[str]) -> str:
    """Python codec name for a charset label, mapped the way browsers do; UTF-8 if unknown"""
    if not label:
        return 'utf-8'
    label = label.strip(HTTP_WHITESPACE).lower()
    try:
        return codecs.lookup(WHATWG_LABELS.get(label, label)).name
    except LookupError:
        return 'utf-8'


def decode_data_uri(uri: str) -> str:
    """Decode a data: URI to text using its declared charset (UTF-8 by default)"""
    parsed = parse_data_uri(uri)
    if parsed is None:
        raise ValueError(f"Failed to parse source map from \"data\" URL: {uri[:64]}")

    encoding = lookup_charset(parsed.charset)
    if encoding == 'utf-8' and parsed.body.startswith(codecs.BOM_UTF8):
        encoding = 'utf-8-sig'
    return parsed.body.decode(encoding, errors='replace')
