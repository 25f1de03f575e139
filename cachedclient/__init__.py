from .cache import Cache, CachePolicy, FileCache, HttpAwareCache
from .client import ApiClient
from .config import Settings, get_settings
from .errors import (
    ApiClientError,
    ApiError,
    CacheDeleteError,
    ConfigurationError,
    EmptyMockError,
    MockError,
    MockFileNotFoundError,
    TransportError,
)
from .model import CacheEntry, RequestSpec, ResponseEnvelope, TlsPolicy, Verb
from .sinks import FileSink, LoggerSink, RecordSink
from .transport import Transport

__all__ = [
    'ApiClient',
    'Transport',
    'Cache',
    'CachePolicy',
    'FileCache',
    'HttpAwareCache',
    'Settings',
    'get_settings',
    'RecordSink',
    'LoggerSink',
    'FileSink',
    'CacheEntry',
    'RequestSpec',
    'ResponseEnvelope',
    'TlsPolicy',
    'Verb',
    'ApiClientError',
    'ApiError',
    'CacheDeleteError',
    'ConfigurationError',
    'EmptyMockError',
    'MockError',
    'MockFileNotFoundError',
    'TransportError',
]
