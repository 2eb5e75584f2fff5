"""
Data model shared by every stage of the pipeline
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

DEFAULT_JS_CONCURRENCY = 20
DEFAULT_CRAWL_CONCURRENCY = 10
DEFAULT_OUTPUT_ROOT = "."

default_logger = logging.getLogger("cloner")


@dataclass(frozen=True)
class SourceFile:
    """One recovered original source file"""
    path: str
    content: str


@dataclass
class ProcessingError:
    message: str
    url: Optional[str] = None
    file: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {'message': self.message}
        if self.url:
            data['url'] = self.url
        if self.file:
            data['file'] = self.file
        return data


class SeenSet:
    """Monotonic set of URLs; `add` is a single check-then-insert step"""

    def __init__(self, items=()):
        self._items = set(items)
        self._lock = threading.Lock()

    def add(self, url: str) -> bool:
        """Insert `url`, returning True only if it was not present yet"""
        with self._lock:
            if url in self._items:
                return False
            self._items.add(url)
            return True

    def __contains__(self, url) -> bool:
        with self._lock:
            return url in self._items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class CloneResult:
    """Accumulator owned by a single pipeline invocation"""

    def __init__(self, urls: Sequence[str] = (), logger=None, verbose: bool = False):
        self.files: Dict[str, str] = {}
        self.total_size = 0
        self.duration = 0.0
        self.urls = list(urls)
        self.errors: List[ProcessingError] = []
        self.conflicts: List[str] = []
        self.unmapped: List[str] = []
        self._logger = logger or default_logger
        self._verbose = verbose
        self._lock = threading.Lock()

    @property
    def total_files(self) -> int:
        return len(self.files)

    def add_file(self, source_file: SourceFile) -> bool:
        """Insert a file; the first writer of a path wins"""
        with self._lock:
            existing = self.files.get(source_file.path)
            if existing is None:
                self.files[source_file.path] = source_file.content
                self.total_size += len(source_file.content.encode('utf-8', errors='replace'))
                return True
            if existing == source_file.content:
                conflict = False
            else:
                conflict = True
                self.conflicts.append(source_file.path)

        if conflict:
            self._logger.warning(f"[!] Conflicting content for {source_file.path}, keeping first version")
        elif self._verbose:
            self._logger.info(f"Duplicate file skipped: {source_file.path}")
        return False

    def add_error(self, message: str, url: Optional[str] = None, file: Optional[str] = None):
        with self._lock:
            self.errors.append(ProcessingError(message=message, url=url, file=file))

    def add_unmapped(self, js_url: str):
        with self._lock:
            self.unmapped.append(js_url)

    def summary(self) -> Dict[str, Any]:
        """JSON-friendly statistics for reports"""
        return {
            'urls': list(self.urls),
            'total_files': self.total_files,
            'total_size': self.total_size,
            'duration': round(self.duration, 3),
            'errors': [e.to_dict() for e in self.errors],
            'conflicts': list(self.conflicts),
            'unmapped': list(self.unmapped),
        }


@dataclass(frozen=True)
class ClonerOptions:
    """Immutable configuration of one pipeline invocation"""
    seed_urls: Sequence[str]
    fetch: Any
    headers: Mapping[str, str] = field(default_factory=dict)
    crawl: bool = False
    verbose: bool = False
    logger: Any = default_logger
    base_url: Optional[str] = None
    seen: SeenSet = field(default_factory=SeenSet)
    url_path_layout: bool = False
    output_root: str = DEFAULT_OUTPUT_ROOT
    renderer: Any = None
    sandbox: Any = None
    js_concurrency: int = DEFAULT_JS_CONCURRENCY
    crawl_concurrency: int = DEFAULT_CRAWL_CONCURRENCY
    max_pages: Optional[int] = None

    @property
    def root_url(self) -> str:
        """URL used to scope the crawl (base URL, else the first seed)"""
        if self.base_url:
            return self.base_url
        return self.seed_urls[0] if self.seed_urls else ""
