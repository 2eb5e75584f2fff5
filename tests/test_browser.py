"""
Manifest sandbox and script renderer against a real headless Chromium

Skipped when Playwright or its Chromium build is not installed.
"""
import time
import unittest

from cloner.browser import BrowserSession
from cloner.errors import ManifestError, SandboxViolation
from cloner.fetchers import FetchResult
from cloner.models import ClonerOptions
from cloner.render import ScriptRenderer
from cloner.sandbox import ManifestSandbox, build_sandbox_script, flatten_manifest

from support import FakeFetcher, quiet_logger

MANIFEST_URL = 'https://example.com/_next/static/build123/_buildManifest.js'

NEXT_MANIFEST = (
    'self.__BUILD_MANIFEST=function(s,c){return{__rewrites:{beforeFiles:[],afterFiles:[],fallback:[]},'
    '"/":[s,"static/chunks/pages/index-0a1b.js"],"/about":[s,c,"static/chunks/pages/about-2c3d.js"],'
    'sortedPages:["/","/about"]}}("static/chunks/framework-4e5f.js","static/css/6a7b.css"),'
    'self.__BUILD_MANIFEST_CB&&self.__BUILD_MANIFEST_CB();'
)


class TestSandboxScript(unittest.TestCase):
    def test_manifest_wrapped_with_marker(self):
        script = build_sandbox_script('self.__BUILD_MANIFEST = {};', 'abc123')
        self.assertIn('self.__BUILD_MANIFEST = {};', script)
        self.assertIn("'abc123:'", script)
        self.assertIn("__deny('eval')", script)
        self.assertIn("  (function () {\n'use strict';\nself.__BUILD_MANIFEST", script)

    def test_flatten_manifest(self):
        manifest = {
            '/': ['static/a.js', 'static/a.css', 'static/shared.js'],
            '/b': ['static/b.js', 'static/shared.js'],
            'sortedPages': ['/', '/b'],
            '__rewrites': {'afterFiles': []},
            'single': 'static/single.js',
            'number': 3,
        }
        self.assertEqual(flatten_manifest(manifest),
                         ['static/a.js', 'static/shared.js', 'static/b.js', 'static/single.js'])
        self.assertEqual(flatten_manifest(['x.js', ['y.js']]), ['x.js', 'y.js'])
        self.assertEqual(flatten_manifest('x.js'), [])


class ChromiumTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.session = None
        try:
            session = BrowserSession()
            await session.browser()
        except Exception as e:
            self.skipTest(f"headless Chromium unavailable: {e}")
        self.session = session

    async def asyncTearDown(self):
        if self.session is not None:
            await self.session.close()


class TestManifestSandbox(ChromiumTestCase):
    async def test_reads_build_manifest(self):
        sandbox = ManifestSandbox(self.session, timeout=5)

        manifest = await sandbox.evaluate(NEXT_MANIFEST, MANIFEST_URL)

        self.assertEqual(manifest['sortedPages'], ['/', '/about'])
        self.assertEqual(flatten_manifest(manifest), [
            'static/chunks/framework-4e5f.js',
            'static/chunks/pages/index-0a1b.js',
            'static/chunks/pages/about-2c3d.js',
        ])

    async def test_infinite_loop_is_terminated(self):
        sandbox = ManifestSandbox(self.session, timeout=1.0)
        started = time.monotonic()

        with self.assertRaises(SandboxViolation):
            await sandbox.evaluate('while (true) {}', MANIFEST_URL)

        self.assertLess(time.monotonic() - started, 10)
        manifest = await sandbox.evaluate('self.__BUILD_MANIFEST = {"/": ["a.js"]};', MANIFEST_URL)
        self.assertEqual(manifest, {'/': ['a.js']})

    async def test_disallowed_primitives(self):
        sandbox = ManifestSandbox(self.session, timeout=5)
        scripts = [
            'self.__BUILD_MANIFEST = eval("({})");',
            'self.__BUILD_MANIFEST = new Function("return {}")();',
            'self.__BUILD_MANIFEST = (0, [].constructor.constructor)("return {}")();',
            'setTimeout(function () {}, 0); self.__BUILD_MANIFEST = {};',
            'fetch("https://example.com/"); self.__BUILD_MANIFEST = {};',
            'new WebAssembly.Module(new Uint8Array([0, 97, 115, 109, 1, 0, 0, 0])); self.__BUILD_MANIFEST = {};',
            'new MessageChannel(); self.__BUILD_MANIFEST = {};',
            'postMessage("x", "*"); self.__BUILD_MANIFEST = {};',
        ]
        for script in scripts:
            with self.subTest(script=script):
                with self.assertRaises(SandboxViolation):
                    await sandbox.evaluate(script, MANIFEST_URL)

    async def test_real_globals_not_reachable(self):
        sandbox = ManifestSandbox(self.session, timeout=5)

        manifest = await sandbox.evaluate(
            'var unbound = (function () { return this; })();'
            'self.__BUILD_MANIFEST = {doc: typeof document, loc: typeof location, top: typeof top,'
            ' same: self === globalThis, unbound: typeof unbound};',
            MANIFEST_URL,
        )

        self.assertEqual(manifest, {'doc': 'undefined', 'loc': 'undefined', 'top': 'undefined',
                                    'same': True, 'unbound': 'undefined'})

    async def test_missing_manifest(self):
        sandbox = ManifestSandbox(self.session, timeout=5)
        with self.assertRaises(ManifestError):
            await sandbox.evaluate('var unrelated = 1;', MANIFEST_URL)
        with self.assertRaises(ManifestError):
            await sandbox.evaluate('self.__BUILD_MANIFEST = {', MANIFEST_URL)


class TestScriptRenderer(ChromiumTestCase):
    async def test_injected_scripts_found(self):
        fetcher = FakeFetcher()
        fetcher.add('https://example.test/static/loader.js',
                    "var s = document.createElement('script'); s.src = '/static/chunk.js'; document.head.appendChild(s);")
        fetcher.add('https://example.test/static/chunk.js', 'window.loaded = true;')
        options = ClonerOptions(seed_urls=['https://example.test/'], fetch=fetcher, logger=quiet_logger())
        page = FetchResult(
            body='<html><head><script src="/static/loader.js"></script></head><body></body></html>',
            status_code=200,
            final_url='https://example.test/',
        )

        urls = await ScriptRenderer(self.session, timeout=10, settle=0.5).render_script_urls(page, options)

        self.assertIn('https://example.test/static/loader.js', urls)
        self.assertIn('https://example.test/static/chunk.js', urls)


if __name__ == '__main__':
    unittest.main()
