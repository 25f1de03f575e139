"""
Defines the values that flow through a request lifecycle.

These types are as simple as possible in order to most conveniently consume and
produce instances of them. None of them know how to send, cache or decode
anything.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union

from requests.structures import CaseInsensitiveDict

from .errors import ConfigurationError
from .util import hostname


class Verb(str, Enum):
    GET = 'GET'
    POST = 'POST'
    PUT = 'PUT'
    PATCH = 'PATCH'
    DELETE = 'DELETE'
    HEAD = 'HEAD'

    @classmethod
    def parse(cls, value: Union[str, 'Verb']) -> 'Verb':
        if isinstance(value, Verb):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ConfigurationError('Unsupported verb "{}"'.format(value)) from None


def charset(content_type: Optional[str]) -> Optional[str]:
    """
    The charset parameter of a Content-Type, if one is given.

    No default is assumed for text types.
    """
    if not content_type:
        return None
    for parameter in content_type.split(';')[1:]:
        name, _, value = parameter.partition('=')
        if name.strip().lower() == 'charset':
            return value.strip().strip('"\'') or None
    return None


@dataclass(frozen=True)
class TlsPolicy:
    """
    How the peer certificate is checked.

    `mode` is one of "verify", "disabled" or "custom". Only the "custom" mode
    uses `ca_path`.
    """

    mode: str = 'verify'
    ca_path: Optional[str] = None

    @classmethod
    def verify(cls) -> 'TlsPolicy':
        return cls('verify')

    @classmethod
    def disabled(cls) -> 'TlsPolicy':
        return cls('disabled')

    @classmethod
    def custom(cls, ca_path: str) -> 'TlsPolicy':
        return cls('custom', str(ca_path))

    def as_requests_verify(self) -> Union[bool, str]:
        """The value to hand to the `verify` argument of `requests`."""
        if self.mode == 'disabled':
            return False
        if self.mode == 'custom':
            return self.ca_path
        return True


@dataclass(frozen=True)
class RequestSpec:
    """
    A fully resolved request, ready to be sent by a transport.
    """

    url: str
    """
    The normalized, absolute URL including any query parameters.
    """

    verb: Verb
    """
    The HTTP method of the request.
    """

    headers: CaseInsensitiveDict = field(default_factory=CaseInsensitiveDict)
    """
    Request headers. Lookups ignore case, transmission keeps the caller's case.
    """

    body: Any = None
    """
    Raw bytes or text, or a structured value (mapping or list).
    """

    encode_body: bool = True
    """
    Whether structured bodies are JSON encoded and given a Content-Length.
    """

    transport_options: Mapping[str, Any] = field(default_factory=dict)
    """
    Transport knobs such as `timeout`, `follow_locations` or `max_redirects`.
    """

    tls: TlsPolicy = field(default_factory=TlsPolicy)

    @property
    def hostname(self) -> Optional[str]:
        return hostname(self.url)


@dataclass
class ResponseEnvelope:
    """
    Everything captured from a single physical HTTP call.

    A connection or protocol failure is recorded as a status of 0 together with
    an `error_message`. HTTP error statuses on their own are not failures.
    """

    status_code: int = 0
    error_message: Optional[str] = None
    raw_body: Optional[bytes] = None
    decoded_body: Any = None
    """
    The structured form of the body, when it is JSON or XML.
    """

    response_headers: Mapping[str, str] = field(default_factory=dict)
    content_type: Optional[str] = None
    effective_url: Optional[str] = None
    advertised_filename: Optional[str] = None

    @property
    def has_error(self) -> bool:
        return bool(self.error_message)

    @property
    def text(self) -> Optional[str]:
        if self.raw_body is None:
            return None
        encoding = charset(self.content_type)
        try:
            return self.raw_body.decode(encoding or 'utf-8', errors='replace')
        except LookupError:
            # Unknown charset advertised by the server.
            return self.raw_body.decode('utf-8', errors='replace')

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return CaseInsensitiveDict(self.response_headers).get(name, default)


@dataclass
class CacheEntry:
    """
    A cache entry.

    The envelope is kept whole, body included. Freshness is decided by the
    entry itself: it is fresh while less than `ttl_seconds` have passed since
    `stored_at`.
    """

    fingerprint: str
    stored_at: float
    envelope: ResponseEnvelope
    ttl_seconds: int

    def is_fresh(self, now: float) -> bool:
        return now - self.stored_at < self.ttl_seconds
