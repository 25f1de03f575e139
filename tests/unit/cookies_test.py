from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase

from requests.cookies import RequestsCookieJar, create_cookie

from cachedclient.cookies import CookieJar


class TestCookieJar(TestCase):
    def setUp(self):
        self.__directory = TemporaryDirectory()
        self.directory = Path(self.__directory.name)

    def tearDown(self):
        self.__directory.cleanup()

    def test_missing_file_loads_nothing(self):
        jar = RequestsCookieJar()

        CookieJar(self.directory / 'cookies.txt').load_into(jar)

        self.assertEqual(0, len(jar))

    def test_save_then_load(self):
        source = RequestsCookieJar()
        source.set_cookie(create_cookie('session', 'abc', domain='example.com'))
        source.set_cookie(create_cookie('theme', 'dark', domain='example.org', path='/app'))
        sut = CookieJar(self.directory / 'nested' / 'cookies.txt')

        sut.save_from(source)
        target = RequestsCookieJar()
        sut.load_into(target)

        self.assertEqual('abc', target.get('session', domain='example.com'))
        self.assertEqual('dark', target.get('theme', domain='example.org', path='/app'))

    def test_file_is_in_mozilla_format(self):
        source = RequestsCookieJar()
        source.set_cookie(create_cookie('session', 'abc', domain='example.com'))
        sut = CookieJar(self.directory / 'cookies.txt')

        sut.save_from(source)

        self.assertIn('# Netscape HTTP Cookie File', sut.cookie_file.read_text())

    def test_unreadable_file_is_ignored(self):
        path = self.directory / 'cookies.txt'
        path.write_text('this is not a cookie file\n')
        jar = RequestsCookieJar()

        with self.assertLogs('cachedclient.cookies', level='WARNING'):
            CookieJar(path).load_into(jar)

        self.assertEqual(0, len(jar))
