"""
Source map resolution per JavaScript file
"""
import unittest

from cloner.data_uri import decode_data_uri
from cloner.errors import FetchError
from cloner.models import CloneResult, ClonerOptions
from cloner.resolver import SourceMapResolver, source_map_candidates
from cloner.sourcemap import parse_source_map

from support import FakeFetcher, make_source_map, quiet_logger, to_data_uri

JS_URL = 'https://example.com/static/app.js'
MAP_TEXT = make_source_map(['webpack://app/src/index.js', 'webpack://app/src/util.js'],
                           ['export default 1;\n', 'export const x = 2;\n'])


class TestSourceMapCandidates(unittest.TestCase):
    def test_directive_then_fallback(self):
        self.assertEqual(
            source_map_candidates(JS_URL, 'maps/app.js.map'),
            ['https://example.com/static/maps/app.js.map', JS_URL + '.map'],
        )

    def test_duplicates_removed(self):
        self.assertEqual(source_map_candidates(JS_URL, 'app.js.map'), [JS_URL + '.map'])

    def test_directive_against_redirected_location(self):
        candidates = source_map_candidates(JS_URL, 'app.js.map', 'https://cdn.example.com/v2/app.js')
        self.assertEqual(candidates[0], 'https://cdn.example.com/v2/app.js.map')

    def test_data_uri_kept(self):
        uri = to_data_uri(MAP_TEXT)
        self.assertEqual(source_map_candidates(JS_URL, uri)[0], uri)


class TestSourceMapResolver(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.fetcher = FakeFetcher()
        self.options = ClonerOptions(seed_urls=[JS_URL], fetch=self.fetcher, logger=quiet_logger())
        self.result = CloneResult([JS_URL], logger=quiet_logger())
        self.resolver = SourceMapResolver(self.options, self.result)

    async def test_fallback_map_used_without_directive(self):
        self.fetcher.add(JS_URL, 'console.log(1);')
        self.fetcher.add(JS_URL + '.map', MAP_TEXT)

        files = await self.resolver.resolve(JS_URL)

        self.assertEqual([f.path for f in files], ['src/index.js', 'src/util.js'])
        self.assertEqual(files[0].content, 'export default 1;\n')
        self.assertEqual(self.result.unmapped, [])

    async def test_data_uri_matches_hosted_map(self):
        self.assertEqual(
            parse_source_map(decode_data_uri(to_data_uri(MAP_TEXT)), JS_URL),
            parse_source_map(MAP_TEXT, JS_URL),
        )

        inline_url = 'https://example.com/static/inline.js'
        self.fetcher.add(inline_url, 'x();\n//# sourceMappingURL=' + to_data_uri(MAP_TEXT))
        self.fetcher.add(JS_URL, 'x();\n//# sourceMappingURL=app.js.map')
        self.fetcher.add(JS_URL + '.map', MAP_TEXT)

        inline = await self.resolver.resolve(inline_url)
        hosted = await self.resolver.resolve(JS_URL)

        self.assertEqual(inline, hosted)
        self.assertNotIn(inline_url + '.map', self.fetcher.requests)

    async def test_html_body_is_not_a_map(self):
        self.fetcher.add(JS_URL, 'x();\n//# sourceMappingURL=/maps/app.map')
        self.fetcher.add('https://example.com/maps/app.map', '<!DOCTYPE html><html><body>Not found</body></html>')
        self.fetcher.add(JS_URL + '.map', MAP_TEXT)

        files = await self.resolver.resolve(JS_URL)

        self.assertEqual(len(files), 2)
        self.assertEqual(self.fetcher.requests, [JS_URL, 'https://example.com/maps/app.map', JS_URL + '.map'])

    async def test_invalid_map_falls_through_to_next_candidate(self):
        self.fetcher.add(JS_URL, 'x();\n//# sourceMappingURL=broken.map')
        self.fetcher.add('https://example.com/static/broken.map', '{"version": 3')
        self.fetcher.add(JS_URL + '.map', MAP_TEXT)

        files = await self.resolver.resolve(JS_URL)

        self.assertEqual(len(files), 2)

    async def test_any_candidate_failure_falls_through(self):
        self.fetcher.add(JS_URL, 'x();\n//# sourceMappingURL=maps/app.js.map')
        self.fetcher.fail('https://example.com/static/maps/app.js.map', ConnectionResetError('reset by peer'))
        self.fetcher.add(JS_URL + '.map', make_source_map(['src/a.js'], ['A']))

        files = await self.resolver.resolve(JS_URL)

        self.assertEqual([f.path for f in files], ['src/a.js'])
        self.assertEqual(self.result.unmapped, [])

    async def test_no_usable_map_is_recorded_as_unmapped(self):
        self.fetcher.add(JS_URL, 'x();')

        files = await self.resolver.resolve(JS_URL)

        self.assertEqual(files, [])
        self.assertEqual(self.result.unmapped, [JS_URL])
        self.assertEqual(self.result.errors, [])

    async def test_bundle_fetch_failure_propagates(self):
        with self.assertRaises(FetchError):
            await self.resolver.resolve(JS_URL)

    async def test_rejected_paths_recorded_against_bundle(self):
        self.fetcher.add(JS_URL, 'x();')
        self.fetcher.add(JS_URL + '.map', make_source_map(
            ['../' * 10000 + 'etc/passwd', '[synthetic:helper]', 'src/ok.js', 'src/empty.js'],
            ['evil', 'synthetic', 'ok', None],
        ))

        files = await self.resolver.resolve(JS_URL)

        self.assertEqual([f.path for f in files], ['src/ok.js'])
        self.assertEqual(len(self.result.errors), 1)
        self.assertEqual(self.result.errors[0].file, JS_URL)
        self.assertIn('Rejected source path', self.result.errors[0].message)


if __name__ == '__main__':
    unittest.main()
