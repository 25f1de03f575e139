"""
Exceptions raised by the client.

Transport failures are not on this list as far as callers are concerned: a
`TransportError` never leaves the transport, it is recorded in the response
envelope instead.
"""

from pathlib import Path


class ApiClientError(Exception):
    pass


class ConfigurationError(ApiClientError, ValueError):
    """
    The client is missing something it needs to dispatch, such as a URL.
    """


class MockError(ApiClientError):
    pass


class EmptyMockError(MockError):
    def __init__(self):
        super().__init__('Empty mock!')


class MockFileNotFoundError(MockError, FileNotFoundError):
    def __init__(self, path: Path):
        super().__init__("Mock file '{}' not found".format(path))
        self.__path = Path(path)

    @property
    def path(self) -> Path:
        return self.__path


class CacheDeleteError(ApiClientError):
    def __init__(self, fingerprint: str, path: Path):
        super().__init__('No cache entry to delete for {} at {}'.format(fingerprint, path))
        self.__fingerprint = fingerprint
        self.__path = path

    @property
    def fingerprint(self) -> str:
        return self.__fingerprint

    @property
    def path(self) -> Path:
        return self.__path


class ApiError(ApiClientError):
    """
    Wraps the error recorded by the last dispatch.
    """

    def __init__(self, message: str):
        super().__init__('ApiClient: {}'.format(message))
        self.message = message


class TransportError(ApiClientError):
    """
    A connection or protocol failure. Only ever seen inside the transport.
    """
