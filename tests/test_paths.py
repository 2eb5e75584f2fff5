"""
Path reconstruction and traversal safety
"""
import posixpath
import unittest

from cloner.errors import PathRejected
from cloner.paths import (
    MAX_SANITIZE_PASSES,
    clamp_parent_climbs,
    collapse_traversal,
    contain,
    sanitize_source_path,
    strip_source_prefix,
)


class TestSanitizeSourcePath(unittest.TestCase):
    def test_webpack_prefix_stripped(self):
        self.assertEqual(sanitize_source_path('webpack://my-app/src/index.js'), 'src/index.js')

    def test_webpack_prefix_without_app_id(self):
        self.assertEqual(sanitize_source_path('webpack:///./src/App.tsx'), 'src/App.tsx')

    def test_other_scheme_stripped(self):
        self.assertEqual(sanitize_source_path('http://example.com/lib/a.js'), 'example.com/lib/a.js')

    def test_synthetic_source_names_no_file(self):
        self.assertIsNone(sanitize_source_path('[synthetic:es6.array.iterator]'))

    def test_backslashes_normalized(self):
        self.assertEqual(sanitize_source_path('src\\components\\Button.jsx'), 'src/components/Button.jsx')

    def test_empty_after_stripping_rejected(self):
        with self.assertRaises(PathRejected):
            sanitize_source_path('webpack://my-app/')
        with self.assertRaises(PathRejected):
            sanitize_source_path('')

    def test_nul_byte_rejected(self):
        with self.assertRaises(PathRejected):
            sanitize_source_path('src/a\x00.js')

    def test_internal_traversal_collapsed(self):
        self.assertEqual(sanitize_source_path('src/../../../etc/passwd'), 'etc/passwd')

    def test_traversal_never_escapes(self):
        for depth in (1, 50):
            with self.subTest(depth=depth):
                path = sanitize_source_path('../' * depth + 'etc/passwd')
                self.assertEqual(path, 'etc/passwd')
                self.assertNotIn('..', path.split('/'))
                self.assertFalse(posixpath.isabs(path))

    def test_pathological_traversal_rejected(self):
        with self.assertRaises(PathRejected) as cm:
            sanitize_source_path('../' * 10000 + 'etc/passwd')
        self.assertIn('passes', cm.exception.reason)

    def test_trailing_parent_rejected(self):
        with self.assertRaises(PathRejected):
            sanitize_source_path('lib/../..')

    def test_trailing_slash_dropped(self):
        self.assertEqual(sanitize_source_path('webpack://app/src/dir/'), 'src/dir')

    def test_relative_to_custom_output_root(self):
        self.assertEqual(sanitize_source_path('../../x.js', output_root='out/site'), 'x.js')


class TestUrlPathLayout(unittest.TestCase):
    JS_URL = 'https://example.com/static/js/main.js'

    def test_relative_source_under_bundle_directory(self):
        path = sanitize_source_path('src/a.js', js_url=self.JS_URL, url_path_layout=True)
        self.assertEqual(path, 'static/js/src/a.js')

    def test_absolute_source_from_url_root(self):
        path = sanitize_source_path('/abs/a.js', js_url=self.JS_URL, url_path_layout=True)
        self.assertEqual(path, 'abs/a.js')

    def test_excess_climbs_clamped(self):
        path = sanitize_source_path('../../../../a.js', js_url=self.JS_URL, url_path_layout=True)
        self.assertEqual(path, 'a.js')

    def test_climbs_within_context_kept(self):
        path = sanitize_source_path('../shared/a.js', js_url=self.JS_URL, url_path_layout=True)
        self.assertEqual(path, 'static/shared/a.js')


class TestHelpers(unittest.TestCase):
    def test_strip_source_prefix(self):
        self.assertEqual(strip_source_prefix('webpack://app/./x.js'), './x.js')
        self.assertEqual(strip_source_prefix('file:///home/a.js'), '/home/a.js')

    def test_clamp_parent_climbs(self):
        self.assertEqual(clamp_parent_climbs('../../../a.js', '/one'), '../a.js')
        self.assertEqual(clamp_parent_climbs('../../../a.js', '/'), 'a.js')
        self.assertEqual(clamp_parent_climbs('a.js', '/one'), 'a.js')

    def test_collapse_traversal_bounded(self):
        self.assertEqual(collapse_traversal('../' * (MAX_SANITIZE_PASSES - 1) + 'a.js'), 'a.js')
        with self.assertRaises(PathRejected):
            collapse_traversal('../' * (MAX_SANITIZE_PASSES + 1) + 'a.js')

    def test_contain(self):
        self.assertEqual(contain('a/b.js'), 'a/b.js')
        self.assertIsNone(contain('../b.js'))
        self.assertIsNone(contain('a/../../b.js', output_root='out'))


if __name__ == '__main__':
    unittest.main()
