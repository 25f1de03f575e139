from abc import ABC, abstractmethod
import base64
from dataclasses import dataclass
import hashlib
import json
import logging
from pathlib import Path
import time
from typing import Any, Callable, Iterable, Optional, Set

from .errors import CacheDeleteError, ConfigurationError
from .model import CacheEntry, ResponseEnvelope, Verb
from .util import DataclassJSONEncoder, clamp, strip_scheme


logger = logging.getLogger(__name__)


def fingerprint(url: Optional[str], verb: Verb, body: Any = None, post_requests: bool = False) -> str:
    """
    Derive the cache key for a request.

    @param url
      The normalized request URL. The scheme does not take part in the key.
    @param verb
      The request verb. Only POST requests with `post_requests` enabled mix the
      body into the key.
    @param body
      The request body. Structured bodies are hashed from their JSON form.
    @return
      The fingerprint.
    @throws ConfigurationError
      If `url` is not set.
    """
    if not url:
        raise ConfigurationError('Undefined URL')

    key = strip_scheme(url)
    if post_requests and verb == Verb.POST:
        key += '+body={}'.format(body_hash(body))
    return key


def body_hash(body: Any) -> str:
    if body is None:
        payload = b''
    elif isinstance(body, (bytes, bytearray)):
        payload = bytes(body)
    elif isinstance(body, str):
        payload = body.encode('utf-8')
    else:
        payload = json.dumps(body, sort_keys=True).encode('utf-8')
    return hashlib.md5(payload).hexdigest()


class Cache(ABC):
    """
    An abstraction of a response cache.

    A response cache has a relatively narrow scope: to remember a response
    envelope such that it can be recalled later under the same fingerprint.
    The only invalidation it knows about is expiry of the time-to-live.
    """

    @abstractmethod
    def lookup(self, fingerprint: str) -> Optional[CacheEntry]:
        """
        Retrieve a fresh entry for `fingerprint`.

        @param fingerprint
          The key to look up.
        @return
          The cached entry, or `None` if there is no fresh one.
        """

    @abstractmethod
    def store(self, fingerprint: str, envelope: ResponseEnvelope, ttl: int) -> Optional[CacheEntry]:
        """
        Add an envelope to the cache, replacing any previous entry.

        @param fingerprint
          The key to store under.
        @param envelope
          The response to remember.
        @param ttl
          Seconds for which the entry stays fresh.
        @return
          The new entry, or `None` if the envelope was not cached.
        """

    @abstractmethod
    def clear(self, fingerprint: str) -> None:
        """
        Delete the entry for `fingerprint`.

        @throws CacheDeleteError
          If there is no entry to delete.
        """

    def close(self):
        """
        Close any resources associated with the cache.
        """


@dataclass
class CachePolicy:
    """
    Which requests and responses may be written to the cache.
    """

    post_requests: bool = False
    """
    Also cache POST requests, keyed by a hash of their body.
    """

    cacheable_statuses: Optional[Set[int]] = None
    """
    When set, exactly these statuses are cached, errors included. Otherwise
    only 2xx and 3xx responses are.
    """

    read_only: bool = False
    """
    Serve from the cache but never write to it.
    """

    def allow_statuses(self, statuses: Iterable[int]) -> None:
        self.cacheable_statuses = {int(status) for status in statuses} or None

    def is_cacheable_method(self, verb: Verb) -> bool:
        if verb == Verb.GET:
            return True
        return verb == Verb.POST and self.post_requests

    def is_cacheable_status(self, status: int) -> bool:
        if self.cacheable_statuses:
            return status in self.cacheable_statuses
        return 200 <= status < 400


class HttpAwareCache(Cache):
    """
    Augments a cache with knowledge of what is worth keeping.

    - Envelopes that carry an error are never written, and are never served
      even if some other writer put them there.
    - Statuses are filtered through the `CachePolicy`.
    """

    def __init__(self, implementation: Cache, policy: Optional[CachePolicy] = None) -> None:
        self.__impl = implementation
        self.__policy = policy if policy is not None else CachePolicy()

    @property
    def policy(self) -> CachePolicy:
        return self.__policy

    def lookup(self, fingerprint: str) -> Optional[CacheEntry]:
        logger.info('Delegating cache lookup to decorated cache.')
        entry = self.__impl.lookup(fingerprint)
        if entry is None:
            logger.info('Decorated cache did not find a fresh cache entry.')
            return None

        if entry.envelope.has_error:
            logger.info('Ignoring cache entry carrying an error: {}'.format(entry.envelope.error_message))
            return None

        logger.info('Cache entry passed all checks. Returning entry from cache.')
        return entry

    def store(self, fingerprint: str, envelope: ResponseEnvelope, ttl: int) -> Optional[CacheEntry]:
        if envelope.has_error:
            logger.info('Refusing to create cache entry. The response carries an error.')
            return None
        if not self.__policy.is_cacheable_status(envelope.status_code):
            logger.info('Refusing to create cache entry. Status code {} is not cachable.'.format(envelope.status_code))
            return None

        logger.info('Delegating cache entry creation to decorated cache.')
        return self.__impl.store(fingerprint, envelope, ttl)

    def clear(self, fingerprint: str) -> None:
        logger.info('Delegating cache entry deletion to decorated cache.')
        self.__impl.clear(fingerprint)

    def close(self):
        self.__impl.close()


class CorruptEntry(Exception):
    def __init__(self, entry_path: Path):
        super().__init__()
        self.__entry_path = entry_path

    @property
    def entry_path(self) -> Path:
        return self.__entry_path


class FileCache(Cache):
    """
    One JSON file per fingerprint.

    There is no locking. Two processes writing the same fingerprint may
    interleave.
    """

    def __init__(self, directory: Path, cache_directory_levels: int = 2,
                 clock: Callable[[], float] = time.time) -> None:
        """
        Initialize the file cache.

        @param directory
          The path to the root directory of the cache.
        @param cache_directory_levels
          The number of subdirectory levels to use in the cache directory. This
          will be clamped to be between 0 and 20, respectively.
        @param clock
          Source of the current time, in seconds since the epoch.
        """
        self.__directory = Path(directory)
        self.__cache_directory_levels = clamp(cache_directory_levels, 0, 20)
        self.__clock = clock

    @property
    def directory(self) -> Path:
        return self.__directory

    def path_for(self, fingerprint: str) -> Path:
        hashed = hashlib.sha256(fingerprint.encode('utf-8')).hexdigest()
        subdirectories = (list(hashed[:self.__cache_directory_levels])
                          + [hashed[self.__cache_directory_levels:] + '.json'])
        return self.__directory / Path(*subdirectories)

    def _load_entry(self, fingerprint: str) -> CacheEntry:
        """
        Read a cache entry from a file.

        @throws FileNotFoundError
          If there is no entry file.
        @throws CorruptEntry
          If the entry file could not be parsed.
        @throws OSError
          If the entry file could not be read.
        """
        entry_path = self.path_for(fingerprint)
        with open(entry_path, 'r', encoding='utf-8') as f:
            try:
                serialized = json.load(f)
            except (json.JSONDecodeError, UnicodeDecodeError):
                raise CorruptEntry(entry_path)
        try:
            return _deserialize(serialized)
        except (AttributeError, KeyError, TypeError, ValueError):
            raise CorruptEntry(entry_path)

    def lookup(self, fingerprint: str) -> Optional[CacheEntry]:
        try:
            logger.info('Looking at the file system for a cache entry matching {}.'.format(fingerprint))
            entry = self._load_entry(fingerprint)
        except CorruptEntry as e:
            logger.warning('Found a corrupt cache entry. Deleting the entry file.')
            try:
                e.entry_path.unlink()
            except OSError:
                logger.exception('Unexpected error occurred while deleting {}'.format(e.entry_path))
            return None
        except FileNotFoundError:
            logger.info('No matching cache entry found.')
            return None
        except OSError:
            logger.exception('Unexpected error occurred while reading the cache entry for {}'.format(fingerprint))
            return None

        if not entry.is_fresh(self.__clock()):
            logger.info('Cache entry for {} has expired.'.format(fingerprint))
            return None

        return entry

    def store(self, fingerprint: str, envelope: ResponseEnvelope, ttl: int) -> Optional[CacheEntry]:
        entry = CacheEntry(fingerprint=fingerprint, stored_at=self.__clock(), envelope=envelope, ttl_seconds=ttl)
        entry_path = self.path_for(fingerprint)
        try:
            logger.info('Writing cache entry to {}'.format(entry_path))
            entry_path.parent.mkdir(parents=True, exist_ok=True)
            serialized = json.dumps(_serialize(entry), cls=DataclassJSONEncoder)
            with open(entry_path, 'w', encoding='utf-8') as f:
                f.write(serialized)
        except (OSError, TypeError, ValueError):
            logger.exception('Unexpected error occurred while writing {}'.format(entry_path))
            return None
        return entry

    def clear(self, fingerprint: str) -> None:
        entry_path = self.path_for(fingerprint)
        logger.info('Deleting {}'.format(entry_path))
        try:
            entry_path.unlink()
        except FileNotFoundError:
            raise CacheDeleteError(fingerprint, entry_path) from None


def _serialize(entry: CacheEntry) -> dict:
    envelope = entry.envelope
    return {
        'fingerprint': entry.fingerprint,
        'stored_at': entry.stored_at,
        'ttl_seconds': entry.ttl_seconds,
        'envelope': {
            'status_code': envelope.status_code,
            'error_message': envelope.error_message,
            'raw_body': envelope.raw_body,
            'decoded_body': envelope.decoded_body,
            'response_headers': list(dict(envelope.response_headers).items()),
            'content_type': envelope.content_type,
            'effective_url': envelope.effective_url,
            'advertised_filename': envelope.advertised_filename,
        },
    }


def _deserialize(serialized: dict) -> CacheEntry:
    envelope = serialized['envelope']
    raw_body = envelope['raw_body']
    return CacheEntry(
        fingerprint=serialized['fingerprint'],
        stored_at=float(serialized['stored_at']),
        ttl_seconds=int(serialized['ttl_seconds']),
        envelope=ResponseEnvelope(
            status_code=int(envelope['status_code']),
            error_message=envelope['error_message'],
            raw_body=None if raw_body is None else base64.b64decode(raw_body),
            decoded_body=envelope.get('decoded_body'),
            response_headers={name: value for name, value in envelope['response_headers']},
            content_type=envelope['content_type'],
            effective_url=envelope['effective_url'],
            advertised_filename=envelope['advertised_filename'],
        ),
    )
