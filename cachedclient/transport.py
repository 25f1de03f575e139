"""
The single physical HTTP call behind every dispatch, on top of a `requests`
session.
"""

import json
import logging
from pathlib import Path
import re
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

import requests
from requests.structures import CaseInsensitiveDict

from .cookies import CookieJar
from .errors import TransportError
from .model import RequestSpec, ResponseEnvelope, Verb


logger = logging.getLogger(__name__)

DEFAULT_MAX_REDIRECTS = 10
DEFAULT_CHUNK_SIZE = 64 * 1024

_FILENAME_PATTERN = re.compile(r'filename="([^"/\\]+)"', re.IGNORECASE)

# Transport options forwarded to `requests` unchanged.
_PASSTHROUGH_OPTIONS = ('auth', 'proxies', 'cookies', 'cert')


def normalize_headers(headers: Union[None, Mapping[str, Any], Iterable[str]]) -> CaseInsensitiveDict:
    """
    Accept headers either as a mapping or as "Name: value" lines.
    """
    normalized = CaseInsensitiveDict()
    if not headers:
        return normalized
    if isinstance(headers, Mapping):
        items = headers.items()
    else:
        items = []
        for line in headers:
            name, sep, value = str(line).partition(':')
            if not sep:
                raise ValueError('Malformed header line: {!r}'.format(line))
            items.append((name, value))
    for name, value in items:
        normalized[str(name).strip()] = str(value).strip()
    return normalized


def encode_body(body: Any, encode: bool) -> Any:
    if isinstance(body, (Mapping, list, tuple)):
        return json.dumps(body).encode('utf-8') if encode else body
    if isinstance(body, str):
        return body.encode('utf-8')
    return body


def advertised_filename(headers: Mapping[str, str]) -> Optional[str]:
    disposition = CaseInsensitiveDict(headers).get('Content-Disposition')
    if not disposition:
        return None
    match = _FILENAME_PATTERN.search(disposition)
    return match.group(1) if match else None


class Transport:
    """
    Issues exactly one physical HTTP call per `send()`.

    HTTP error statuses are data, not failures: only connection and protocol
    problems are reported as errors, and those are recorded in the returned
    envelope rather than raised.
    """

    def __init__(self, session: Optional[requests.Session] = None) -> None:
        self.__session = session if session is not None else requests.Session()

    @property
    def session(self) -> requests.Session:
        return self.__session

    def send(self, spec: RequestSpec, cookies: Optional[CookieJar] = None) -> ResponseEnvelope:
        try:
            response = self._perform(spec, cookies, stream=False)
        except TransportError as e:
            logger.info('{} {} failed: {}'.format(spec.verb.value, spec.url, e))
            return ResponseEnvelope(status_code=0, error_message=str(e), effective_url=spec.url)

        logger.info('{} {} returned {}'.format(spec.verb.value, spec.url, response.status_code))
        return self._envelope(response, response.content)

    def download(self, spec: RequestSpec, path: Union[str, Path], cookies: Optional[CookieJar] = None,
                 chunk_size: int = DEFAULT_CHUNK_SIZE) -> Tuple[ResponseEnvelope, int]:
        """
        Stream the response body straight into `path`.

        @return
          The envelope (without a body) and the number of bytes written.
        """
        path = Path(path)
        try:
            response = self._perform(spec, cookies, stream=True)
        except TransportError as e:
            return ResponseEnvelope(status_code=0, error_message=str(e), effective_url=spec.url), 0

        written = 0
        try:
            with open(path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    f.write(chunk)
                    written += len(chunk)
        except (requests.RequestException, OSError) as e:
            envelope = self._envelope(response, None)
            envelope.error_message = str(e) or e.__class__.__name__
            return envelope, written
        finally:
            response.close()

        logger.info('Downloaded {} bytes from {} into {}'.format(written, spec.url, path))
        return self._envelope(response, None), written

    def close(self) -> None:
        self.__session.close()

    def _perform(self, spec: RequestSpec, cookies: Optional[CookieJar], stream: bool) -> requests.Response:
        kwargs = self._request_arguments(spec)
        self.__session.max_redirects = int(spec.transport_options.get('max_redirects') or DEFAULT_MAX_REDIRECTS)

        if cookies is not None:
            cookies.load_into(self.__session.cookies)
        try:
            return self.__session.request(stream=stream, **kwargs)
        except (requests.RequestException, OSError) as e:
            # An unusable CA bundle path surfaces as a plain OSError.
            raise TransportError(str(e) or e.__class__.__name__) from e
        finally:
            if cookies is not None:
                self._persist_cookies(cookies)

    def _persist_cookies(self, cookies: CookieJar) -> None:
        try:
            cookies.save_from(self.__session.cookies)
        except OSError:
            logger.exception('Unexpected error occurred while saving cookies to {}'.format(cookies.cookie_file))

    def _request_arguments(self, spec: RequestSpec) -> dict:
        options = spec.transport_options
        headers = CaseInsensitiveDict(spec.headers)

        data = None
        if spec.body is not None and spec.verb != Verb.GET:
            data = encode_body(spec.body, spec.encode_body)
            if spec.encode_body and isinstance(data, bytes) and data:
                headers['Content-Length'] = str(len(data))

        # 0 means no limit for either timeout.
        read_timeout = options.get('timeout') or None
        connect_timeout = options.get('connect_timeout') or None
        timeout = None
        if read_timeout is not None or connect_timeout is not None:
            timeout = (connect_timeout, read_timeout)

        arguments = {
            'method': spec.verb.value,
            'url': spec.url,
            'headers': dict(headers),
            'data': data,
            'timeout': timeout,
            'allow_redirects': bool(options.get('follow_locations', False)),
            'verify': spec.tls.as_requests_verify(),
        }
        for name in _PASSTHROUGH_OPTIONS:
            if options.get(name) is not None:
                arguments[name] = options[name]
        return arguments

    def _envelope(self, response: requests.Response, body: Optional[bytes]) -> ResponseEnvelope:
        headers = dict(response.headers)
        return ResponseEnvelope(
            status_code=int(response.status_code),
            error_message=None,
            raw_body=body,
            response_headers=headers,
            content_type=response.headers.get('Content-Type'),
            effective_url=response.url,
            advertised_filename=advertised_filename(headers),
        )
