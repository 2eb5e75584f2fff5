"""
Sandboxed execution of build-manifest scripts

A `_buildManifest.js` file only exposes its route table once it runs, so
it has to be executed. It runs inside a throwaway Chromium page rather than
anywhere near the host interpreter:

- the page is served from a fake origin through request interception and
  every other request is aborted, so there is no network;
- the page's Content-Security-Policy omits 'unsafe-eval' and
  'wasm-unsafe-eval', so eval, new Function and WebAssembly compilation
  throw;
- timers, fetch, XHR, sockets and workers are replaced with functions that
  throw before the manifest runs, and the manifest sees a fresh empty object
  as `self`, `window` and `globalThis`. It runs in strict mode, so a plain
  function call gets an undefined `this` instead of the real window;
- the whole run is bounded by a wall-clock timeout, after which script
  execution is terminated and the page is discarded.

The only value read back is the JSON serialisation of `self.__BUILD_MANIFEST`.
"""
import asyncio
import json
import logging
import secrets
from typing import Any, List

from cloner.errors import ManifestError, SandboxViolation

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_TIMEOUT = 1.0
MANIFEST_GLOBAL = '__BUILD_MANIFEST'

SANDBOX_ORIGIN = 'https://manifest-sandbox.invalid'
SANDBOX_PAGE_URL = SANDBOX_ORIGIN + '/'
SANDBOX_SCRIPT_URL = SANDBOX_ORIGIN + '/manifest.js'

SANDBOX_CSP = f"default-src 'none'; script-src {SANDBOX_SCRIPT_URL}"
SANDBOX_PAGE = f'<!DOCTYPE html><html><head><script src="{SANDBOX_SCRIPT_URL}"></script></head><body></body></html>'

DENIED_GLOBALS = (
    'eval', 'Function', 'setTimeout', 'setInterval', 'setImmediate', 'clearTimeout',
    'clearInterval', 'queueMicrotask', 'requestAnimationFrame', 'requestIdleCallback',
    'fetch', 'XMLHttpRequest', 'WebSocket', 'EventSource', 'Worker', 'SharedWorker',
    'importScripts', 'WebAssembly', 'Promise', 'MessageChannel', 'BroadcastChannel', 'postMessage',
    'Image',
)
HIDDEN_GLOBALS = (
    'document', 'navigator', 'location', 'history', 'localStorage', 'sessionStorage',
    'indexedDB', 'caches', 'top', 'parent', 'frames', 'opener', 'open',
)

VIOLATION_MARKERS = ('SandboxViolation', 'unsafe-eval', 'WebAssembly', 'Content Security Policy')


def build_sandbox_script(source: str, marker: str) -> str:
    """Wrap the manifest so it runs against an empty `self` and reports once"""
    denied = ', '.join(DENIED_GLOBALS)
    hidden = ', '.join(HIDDEN_GLOBALS)
    denied_args = ', '.join(f"__deny('{name}')" for name in DENIED_GLOBALS)
    hidden_args = ', '.join('undefined' for _ in HIDDEN_GLOBALS)
    return (
        "var __sandboxReport = (function (log) {\n"
        "  return function (status, payload) { log('" + marker + ":' + status + ':' + payload); };\n"
        "})(console.log.bind(console));\n"
        "var __sandboxStringify = JSON.stringify.bind(JSON);\n"
        "function __deny(name) {\n"
        "  return function () { throw new Error('SandboxViolation: ' + name + ' is not available'); };\n"
        "}\n"
        f"[{', '.join(repr(name) for name in DENIED_GLOBALS)}].forEach(function (name) {{\n"
        "  try { window[name] = __deny(name); } catch (e) {}\n"
        "});\n"
        f"function __sandboxManifest(self, window, globalThis, {denied}, {hidden}) {{\n"
        "  (function () {\n"
        "'use strict';\n"
        f"{source}\n"
        "  }).call(self);\n"
        "}\n"
        "(function () {\n"
        "  var sandbox = {};\n"
        "  try {\n"
        f"    __sandboxManifest(sandbox, sandbox, sandbox, {denied_args}, {hidden_args});\n"
        f"    var manifest = sandbox.{MANIFEST_GLOBAL};\n"
        "    __sandboxReport('ok', __sandboxStringify(manifest === undefined ? null : manifest));\n"
        "  } catch (e) {\n"
        "    __sandboxReport('error', String((e && e.message) || e));\n"
        "  }\n"
        "})();\n"
    )


def _classify_failure(url: str, message: str) -> Exception:
    if any(marker in message for marker in VIOLATION_MARKERS):
        return SandboxViolation(url, message)
    return ManifestError(url, {'message': message})


class ManifestSandbox:
    """Runs manifest scripts in an isolated, time-bounded browser page"""

    def __init__(self, browser_session, timeout: float = DEFAULT_MANIFEST_TIMEOUT):
        self.browser_session = browser_session
        self.timeout = timeout

    async def evaluate(self, source: str, url: str) -> Any:
        """Execute `source` and return the decoded `self.__BUILD_MANIFEST`

        Raises SandboxViolation on timeout or use of a disallowed primitive
        and ManifestError when the script fails or defines no manifest.
        """
        marker = secrets.token_hex(12)
        script = build_sandbox_script(source, marker)
        messages: List[str] = []
        page_errors: List[str] = []

        async def route_handler(route):
            request_url = route.request.url
            if request_url == SANDBOX_PAGE_URL:
                await route.fulfill(
                    status=200,
                    content_type='text/html; charset=utf-8',
                    headers={'Content-Security-Policy': SANDBOX_CSP},
                    body=SANDBOX_PAGE,
                )
            elif request_url == SANDBOX_SCRIPT_URL:
                await route.fulfill(status=200, content_type='application/javascript; charset=utf-8', body=script)
            else:
                await route.abort()

        try:
            context = await self.browser_session.new_context(service_workers='block', java_script_enabled=True)
        except Exception as e:
            raise ManifestError(url, {'message': f"browser unavailable: {e}"}) from e

        try:
            await context.route('**/*', route_handler)
            page = await context.new_page()
            page.on('console', lambda msg: messages.append(msg.text))
            page.on('pageerror', lambda error: page_errors.append(str(error)))
            cdp = await context.new_cdp_session(page)

            try:
                await asyncio.wait_for(
                    page.goto(SANDBOX_PAGE_URL, wait_until='load', timeout=(self.timeout + 1) * 1000),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                await self._terminate(cdp)
                raise SandboxViolation(url, f"exceeded the {self.timeout}s time budget")
            except Exception as e:
                raise ManifestError(url, {'message': str(e)}) from e
        finally:
            await self._dispose(context)

        return self._read_report(url, marker, messages, page_errors)

    def _read_report(self, url: str, marker: str, messages: List[str], page_errors: List[str]) -> Any:
        prefix = marker + ':'
        for text in messages:
            if not text.startswith(prefix):
                continue
            status, _, payload = text[len(prefix):].partition(':')
            if status == 'error':
                raise _classify_failure(url, payload)
            try:
                manifest = json.loads(payload)
            except ValueError as e:
                raise ManifestError(url, {'message': f"unreadable manifest: {e}"}) from e
            if manifest is None:
                raise ManifestError(url, {'message': f"self.{MANIFEST_GLOBAL} was not defined"})
            return manifest

        detail = page_errors[0] if page_errors else 'script did not complete'
        raise _classify_failure(url, detail)

    async def _terminate(self, cdp):
        try:
            await asyncio.wait_for(cdp.send('Runtime.terminateExecution'), timeout=1)
        except Exception as e:
            logger.debug(f"Could not terminate sandbox script: {e}")

    async def _dispose(self, context):
        try:
            await asyncio.wait_for(context.close(), timeout=5)
        except Exception as e:
            # A renderer that ignores termination takes the whole browser with it
            logger.warning(f"[!] Sandbox context did not close cleanly ({e}), restarting browser")
            await self.browser_session.close()


def flatten_manifest(manifest: Any) -> List[str]:
    """`.js` strings among the manifest's values, flattened one level, deduplicated"""
    values: List[Any] = []
    if isinstance(manifest, dict):
        items = manifest.values()
    elif isinstance(manifest, list):
        items = manifest
    else:
        items = []
    for value in items:
        if isinstance(value, list):
            values.extend(value)
        else:
            values.append(value)
    files = [v for v in values if isinstance(v, str) and v.endswith('.js')]
    return list(dict.fromkeys(files))

