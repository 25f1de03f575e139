from ddt import ddt, data, unpack
import json
from mockito import when, mock, unstub, verify
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase

from cachedclient.cache import Cache, CachePolicy, FileCache, HttpAwareCache, fingerprint
from cachedclient.errors import CacheDeleteError, ConfigurationError
from cachedclient.model import CacheEntry, ResponseEnvelope, Verb


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def ok_envelope(status: int = 200, body: bytes = b'{"a": 1}') -> ResponseEnvelope:
    return ResponseEnvelope(
        status_code=status,
        raw_body=body,
        response_headers={'Content-Type': 'application/json', 'ETag': 'gibberish'},
        content_type='application/json',
        effective_url='http://google.ca/',
        advertised_filename=None,
    )


@ddt
class TestFingerprint(TestCase):
    @data(
        # The scheme does not take part in the key.
        ('http://google.ca/a?b=1', Verb.GET, None, False, 'google.ca/a?b=1'),
        ('https://google.ca/a', Verb.GET, None, False, 'google.ca/a'),
        # Without POST caching the body is ignored.
        ('https://google.ca/a', Verb.POST, {'x': 1}, False, 'google.ca/a'),
        # The body only counts for POST requests.
        ('https://google.ca/a', Verb.PUT, 'payload', True, 'google.ca/a'),
        ('https://google.ca/a', Verb.POST, 'payload', True, 'google.ca/a+body=321c3cf486ed509164edec1e1981fec8'),
    )
    @unpack
    def test_fingerprint(self, url, verb, body, post_requests, expected):
        self.assertEqual(expected, fingerprint(url, verb, body, post_requests))

    def test_structured_bodies_hash_independently_of_key_order(self):
        first = fingerprint('https://google.ca', Verb.POST, {'a': 1, 'b': 2}, True)
        second = fingerprint('https://google.ca', Verb.POST, {'b': 2, 'a': 1}, True)
        third = fingerprint('https://google.ca', Verb.POST, {'a': 2}, True)

        self.assertEqual(first, second)
        self.assertNotEqual(first, third)

    @data(None, '')
    def test_missing_url(self, url):
        with self.assertRaises(ConfigurationError):
            fingerprint(url, Verb.GET)


@ddt
class TestFileCache(TestCase):
    def setUp(self):
        self.__directory = TemporaryDirectory()
        self.directory = Path(self.__directory.name)
        self.clock = FakeClock()
        self.sut = FileCache(self.directory, 5, clock=self.clock)

    def tearDown(self):
        self.__directory.cleanup()

    def test_path_for(self):
        path = self.sut.path_for('google.ca')

        relative = path.relative_to(self.directory)
        self.assertEqual(6, len(relative.parts))
        self.assertTrue(all(len(part) == 1 for part in relative.parts[:5]))
        self.assertTrue(relative.name.endswith('.json'))

    def test_store_then_lookup_returns_equal_envelope(self):
        envelope = ok_envelope()

        stored = self.sut.store('google.ca', envelope, 60)
        self.clock.now += 59
        entry = self.sut.lookup('google.ca')

        self.assertEqual(CacheEntry('google.ca', 1000.0, envelope, 60), stored)
        self.assertEqual(envelope, entry.envelope)
        self.assertEqual(1000.0, entry.stored_at)
        self.assertEqual(60, entry.ttl_seconds)

    def test_binary_bodies_survive(self):
        envelope = ok_envelope(body=bytes(range(256)))

        self.sut.store('google.ca', envelope, 60)

        self.assertEqual(bytes(range(256)), self.sut.lookup('google.ca').envelope.raw_body)

    def test_entries_are_plain_json(self):
        self.sut.store('google.ca', ok_envelope(), 60)

        with open(self.sut.path_for('google.ca'), 'r') as f:
            contents = json.load(f)

        self.assertEqual('google.ca', contents['fingerprint'])
        self.assertEqual(200, contents['envelope']['status_code'])

    @data(
        (59.9, True),
        (60, False),
        (3600, False),
    )
    @unpack
    def test_freshness(self, elapsed, expected_hit):
        self.sut.store('google.ca', ok_envelope(), 60)
        self.clock.now += elapsed

        entry = self.sut.lookup('google.ca')

        self.assertEqual(expected_hit, entry is not None)
        # Stale entries are left in place.
        self.assertTrue(self.sut.path_for('google.ca').exists())

    def test_missing_entry_is_a_miss(self):
        self.assertIsNone(self.sut.lookup('google.ca'))

    def test_corrupt_entry_is_deleted(self):
        path = self.sut.path_for('google.ca')
        path.parent.mkdir(parents=True)
        path.write_text('{"not": "an entry"}')

        self.assertIsNone(self.sut.lookup('google.ca'))
        self.assertFalse(path.exists())

    @data(
        b'\xff\xfe garbage',
        b'["a", "list"]',
        b'{"envelope": ["not", "a", "mapping"], "fingerprint": "x", "stored_at": 1, "ttl_seconds": 1}',
    )
    def test_undecodable_entry_is_deleted(self, contents):
        path = self.sut.path_for('example.com/x')
        path.parent.mkdir(parents=True)
        path.write_bytes(contents)

        self.assertIsNone(self.sut.lookup('example.com/x'))
        self.assertFalse(path.exists())

    def test_unreadable_entry_is_a_miss(self):
        # A directory where the entry file should be.
        self.sut.path_for('example.com/x').mkdir(parents=True)

        with self.assertLogs('cachedclient.cache', level='ERROR'):
            self.assertIsNone(self.sut.lookup('example.com/x'))

    def test_store_overwrites(self):
        self.sut.store('google.ca', ok_envelope(body=b'old'), 60)
        self.sut.store('google.ca', ok_envelope(body=b'new'), 60)

        self.assertEqual(b'new', self.sut.lookup('google.ca').envelope.raw_body)

    def test_clear(self):
        self.sut.store('google.ca', ok_envelope(), 60)

        self.sut.clear('google.ca')

        self.assertIsNone(self.sut.lookup('google.ca'))

    def test_clear_missing_entry_raises(self):
        with self.assertRaises(CacheDeleteError) as context:
            self.sut.clear('google.ca')

        self.assertEqual('google.ca', context.exception.fingerprint)

    def test_write_errors_are_swallowed(self):
        # A file where the cache wants a directory.
        blocked = FileCache(self.directory / 'file', 0, clock=self.clock)
        (self.directory / 'file').write_text('')

        self.assertIsNone(blocked.store('google.ca', ok_envelope(), 60))


@ddt
class TestCachePolicy(TestCase):
    @data(
        (Verb.GET, False, True),
        (Verb.GET, True, True),
        (Verb.POST, False, False),
        (Verb.POST, True, True),
        (Verb.PUT, True, False),
        (Verb.DELETE, True, False),
        (Verb.HEAD, False, False),
    )
    @unpack
    def test_is_cacheable_method(self, verb, post_requests, expected):
        self.assertEqual(expected, CachePolicy(post_requests=post_requests).is_cacheable_method(verb))

    @data(
        (None, 200, True),
        (None, 301, True),
        (None, 399, True),
        (None, 199, False),
        (None, 404, False),
        (None, 500, False),
        ({404}, 404, True),
        # An allow-list replaces the default range entirely.
        ({404}, 200, False),
    )
    @unpack
    def test_is_cacheable_status(self, statuses, status, expected):
        self.assertEqual(expected, CachePolicy(cacheable_statuses=statuses).is_cacheable_status(status))

    def test_empty_allow_list_restores_default(self):
        policy = CachePolicy()
        policy.allow_statuses([])

        self.assertIsNone(policy.cacheable_statuses)
        self.assertTrue(policy.is_cacheable_status(200))


@ddt
class TestHttpAwareCache(TestCase):
    def setUp(self):
        self.__wrapped = mock(Cache)
        self.__policy = CachePolicy()
        self.__sut = HttpAwareCache(self.__wrapped, self.__policy)

    def tearDown(self):
        unstub()

    @data(
        # When the decorated cache does not have an element, neither does the HTTP-aware cache.
        (None, False),
        # A cached success is served.
        (CacheEntry('google.ca', 0, ok_envelope(), 60), True),
        # A cached error is never served, even though someone wrote it.
        (CacheEntry('google.ca', 0, ResponseEnvelope(status_code=0, error_message='Connection refused'), 60), False),
    )
    @unpack
    def test_lookup(self, decorated_result, expected_hit):
        # region set up
        when(self.__wrapped).lookup('google.ca').thenReturn(decorated_result)
        # endregion

        entry = self.__sut.lookup('google.ca')

        self.assertEqual(decorated_result if expected_hit else None, entry)

    @data(
        # When the status code is 200, the response can be cached.
        (None, ok_envelope(200), True),
        # When the status code is 500, the response is not cached.
        (None, ok_envelope(500), False),
        # Errors are never cached.
        (None, ResponseEnvelope(status_code=0, error_message='timed out'), False),
        # Allow-listed error statuses are cached.
        ({500}, ok_envelope(500), True),
        ({500}, ResponseEnvelope(status_code=500, error_message='reset'), False),
    )
    @unpack
    def test_store(self, statuses, envelope, expected_to_be_cached):
        # region set up
        self.__policy.cacheable_statuses = statuses
        entry = CacheEntry('google.ca', 0, envelope, 60)
        when(self.__wrapped).store('google.ca', envelope, 60).thenReturn(entry)
        # endregion

        result = self.__sut.store('google.ca', envelope, 60)

        self.assertEqual(entry if expected_to_be_cached else None, result)
        verify(self.__wrapped, 1 if expected_to_be_cached else 0).store('google.ca', envelope, 60)

    def test_clear(self):
        when(self.__wrapped).clear('google.ca').thenReturn(None)

        self.__sut.clear('google.ca')

        verify(self.__wrapped).clear('google.ca')
