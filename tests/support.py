"""
Canned collaborators shared by the test modules
"""
import base64
import json
import logging
from typing import Dict, List, Optional

from cloner.errors import FetchError, ManifestError
from cloner.fetchers import ContentFetcher, FetchResult


class FakeFetcher(ContentFetcher):
    """Serves registered bodies; unknown URLs are 404s"""

    def __init__(self):
        self.responses: Dict[str, object] = {}
        self.requests: List[str] = []
        self.closed = False

    def add(self, url: str, body: str, final_url: Optional[str] = None, status_code: int = 200):
        self.responses[url] = FetchResult(body=body, status_code=status_code, final_url=final_url or url)
        return self

    def fail(self, url: str, error: Exception):
        self.responses[url] = error
        return self

    async def fetch(self, url, headers=None):
        self.requests.append(url)
        response = self.responses.get(url)
        if response is None:
            raise FetchError(url, 404, {'message': 'Not Found'})
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        self.closed = True


class FakeSandbox:
    """Returns a fixed manifest, or raises the configured error"""

    def __init__(self, manifest=None, error: Optional[Exception] = None):
        self.manifest = manifest
        self.error = error
        self.evaluated: List[str] = []

    async def evaluate(self, source, url):
        self.evaluated.append(url)
        if self.error is not None:
            raise self.error
        if self.manifest is None:
            raise ManifestError(url, {'message': 'no manifest'})
        return self.manifest


def make_source_map(sources: List[str], contents: Optional[List] = None, **extra) -> str:
    data = {'version': 3, 'sources': sources, 'names': [], 'mappings': 'AAAA'}
    if contents is not None:
        data['sourcesContent'] = contents
    data.update(extra)
    return json.dumps(data)


def to_data_uri(text: str) -> str:
    encoded = base64.b64encode(text.encode('utf-8')).decode('ascii')
    return f"data:application/json;charset=utf-8;base64,{encoded}"


def quiet_logger(name: str = 'cloner.tests') -> logging.Logger:
    logger = logging.getLogger(name)
    logger.propagate = False
    logger.addHandler(logging.NullHandler())
    return logger
