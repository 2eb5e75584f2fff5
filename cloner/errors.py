"""
Error taxonomy for the cloning pipeline
"""
import json
from typing import Optional


class ClonerError(Exception):
    """Base class for every error raised by the pipeline"""

    code = "CLONER_ERROR"

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidSeedURL(ClonerError):
    """A seed URL could not be used; fatal before any work is scheduled"""

    code = "INVALID_URL"

    def __init__(self, url: str, details=None):
        super().__init__(f"Invalid URL: {url}", details)
        self.url = url


class FetchError(ClonerError):
    """A single resource could not be fetched"""

    code = "HTTP_ERROR"

    def __init__(self, url: str, status_code: Optional[int] = None, details=None):
        if status_code:
            message = f"HTTP {status_code} error fetching {url}"
        else:
            message = f"Network error fetching {url}"
        super().__init__(message, details)
        self.url = url
        self.status_code = status_code


class SourceMapParseError(ClonerError):
    """A source map payload is structurally invalid"""

    code = "PARSE_ERROR"

    def __init__(self, url: str, details=None):
        super().__init__(f"Failed to parse source map from {url}", details)
        self.url = url


class PathRejected(ClonerError):
    """A declared source path cannot be turned into a safe output path"""

    code = "PATH_REJECTED"

    def __init__(self, source: str, reason: str):
        shown = source if len(source) <= 120 else source[:117] + "..."
        super().__init__(f"Rejected source path {shown!r}: {reason}", {"reason": reason})
        self.source = source
        self.reason = reason


class SandboxViolation(ClonerError):
    """The manifest script ran out of time or touched a disallowed primitive"""

    code = "SANDBOX_VIOLATION"

    def __init__(self, url: str, reason: str):
        super().__init__(f"Sandbox violation in {url}: {reason}", {"reason": reason})
        self.url = url
        self.reason = reason


class ManifestError(ClonerError):
    """The manifest script failed or did not define a build manifest"""

    code = "MANIFEST_ERROR"

    def __init__(self, url: str, details=None):
        super().__init__(f"Could not evaluate build manifest {url}", details)
        self.url = url


def format_error(error: BaseException) -> str:
    """Render an exception for logs and error lists"""
    if isinstance(error, ClonerError):
        if error.details:
            try:
                details = json.dumps(error.details, default=str)
            except (TypeError, ValueError):
                details = str(error.details)
            return f"{error.message} ({details})"
        return error.message
    message = str(error)
    return message or error.__class__.__name__
