"""
The request lifecycle.

Every dispatch starts from scratch: the mock overlay is consulted first, then
the cache, and only then the retrying transport. The only state that outlives
a call is in the cache directory, the cookie file and the throttle state.
"""

import base64
from datetime import datetime
import logging
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from requests.structures import CaseInsensitiveDict

from .cache import Cache, CachePolicy, FileCache, HttpAwareCache, fingerprint
from .config import Settings, get_settings
from .cookies import CookieJar
from .errors import ApiError, ConfigurationError
from .interpret import decode_json, interpret
from .mock import MockOverlay
from .model import RequestSpec, ResponseEnvelope, TlsPolicy, Verb
from .sinks import RecordSink, as_sink
from .throttle import RetryController
from .transport import DEFAULT_MAX_REDIRECTS, Transport, normalize_headers
from .util import add_query_params, normalize_url, resolve


logger = logging.getLogger(__name__)

USER_AG_FIREFOX = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:98.0) Gecko/20100101 Firefox/98.0'
USER_AG_SAFARI = ('Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 '
                  '(KHTML, like Gecko) Version/15.3 Safari/605.1.15')
USER_AG_EDGE = ('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
                '(KHTML, like Gecko) Chrome/100.0.4896.79 Safari/537.36 Edg/100.0.4896.79')
USER_AG_CHROME = ('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
                  '(KHTML, like Gecko) Chrome/100.0.4896.75 Safari/537.36')
USER_AG_POSTMAN = 'PostmanRuntime/7.34.0'

TlsSetting = Union[None, bool, str, TlsPolicy]


def _as_tls_policy(value: TlsSetting) -> Optional[TlsPolicy]:
    if value is None or isinstance(value, TlsPolicy):
        return value
    if value is False:
        return TlsPolicy.disabled()
    if value is True:
        return TlsPolicy.verify()
    return TlsPolicy.custom(value)


class ApiClient:
    """
    A stateful request builder and executor.

    Builder methods return the client so calls can be chained; dispatch methods
    return it too, and the outcome is read back through the accessors:

        client = ApiClient('https://example.com/api').cache(60).set_retries(3)
        data = client.decode().get().get_data_or_fail()

    Instances are not safe to share between threads.
    """

    def __init__(self, url: Optional[str] = None, *,
                 transport: Optional[Transport] = None,
                 cache: Optional[Cache] = None,
                 settings: Optional[Settings] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        """
        @param url
          The URL to request, if already known.
        @param transport
          Performs the physical calls. Defaults to a `requests` session.
        @param cache
          Where responses are cached. Defaults to a `FileCache` in the
          configured cache directory, created on first use.
        @param settings
          Process-wide defaults. When not given they are read from the
          environment on every dispatch.
        @param clock
          Monotonic clock used for throttling.
        @param sleep
          Used to pause between requests to the same domain.
        """
        self.__settings = settings
        self.__transport = transport if transport is not None else Transport()
        self.__controller = RetryController(self.__transport, clock=clock, sleep=sleep)
        self.__policy = CachePolicy()
        self.__cache = HttpAwareCache(cache, self.__policy) if cache is not None else None
        self.__mock = MockOverlay()

        # Request
        self.__url: Optional[str] = None
        self.__verb = Verb.GET
        self.__headers = CaseInsensitiveDict()
        self.__options: dict = {}
        self.__body: Any = None
        self.__encode_body = True
        self.__max_retries = 1
        self.__tls: Optional[TlsPolicy] = None
        self.__query_params: dict = {}
        self.__cookie_jar: Optional[CookieJar] = None

        # Response
        self.__envelope: Optional[ResponseEnvelope] = None
        self.__status: Optional[int] = None
        self.__error: Optional[str] = None
        self.__response: Any = None
        self.__raw_response: Any = None
        self.__decode = False

        # Cache
        self.__ttl: Optional[int] = None

        # Logs
        self.__request_sink: Optional[RecordSink] = None
        self.__response_sink: Optional[RecordSink] = None

        if url is not None:
            self.set_url(url)

    # region Resources

    def close(self) -> None:
        self.__transport.close()
        if self.__cache is not None:
            self.__cache.close()

    def __enter__(self) -> 'ApiClient':
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # endregion

    # region Builder

    def set_url(self, url: str) -> 'ApiClient':
        self.__url = normalize_url(url)
        return self

    def url(self, url: str) -> 'ApiClient':
        return self.set_url(url)

    def query_param(self, name: str, value: Any) -> 'ApiClient':
        self.__query_params[name] = value
        return self

    def query_params(self, params: Mapping[str, Any]) -> 'ApiClient':
        for name, value in params.items():
            self.__query_params[name] = value
        return self

    def set_headers(self, headers: Union[Mapping[str, Any], Iterable[str]]) -> 'ApiClient':
        self.__headers = normalize_headers(headers)
        return self

    def add_header(self, name: str, value: Any) -> 'ApiClient':
        self.__headers[name] = str(value)
        return self

    def content_type(self, mime_type: str) -> 'ApiClient':
        return self.add_header('Content-Type', mime_type)

    def accept(self, mime_type: str) -> 'ApiClient':
        return self.add_header('Accept', mime_type)

    def user_agent(self, value: str) -> 'ApiClient':
        return self.add_header('User-Agent', value)

    def authorization(self, value: str) -> 'ApiClient':
        return self.add_header('Authorization', value)

    def basic_auth(self, username: str, password: str) -> 'ApiClient':
        token = base64.b64encode('{}:{}'.format(username, password).encode('utf-8')).decode('ascii')
        return self.authorization('Basic ' + token)

    def bearer_auth(self, token: str) -> 'ApiClient':
        return self.authorization('Bearer ' + token)

    def set_option(self, name: str, value: Any) -> 'ApiClient':
        self.__options[name] = value
        return self

    def option(self, name: str, value: Any) -> 'ApiClient':
        return self.set_option(name, value)

    def set_options(self, options: Optional[Mapping[str, Any]]) -> 'ApiClient':
        if options:
            self.__options.update(options)
        return self

    def follow_locations(self, max_redirects: int = DEFAULT_MAX_REDIRECTS) -> 'ApiClient':
        self.__options['follow_locations'] = max_redirects > 0
        self.__options['max_redirects'] = max_redirects
        return self

    def redirect(self, max_redirects: int = DEFAULT_MAX_REDIRECTS) -> 'ApiClient':
        return self.follow_locations(max_redirects)

    def set_timeout(self, seconds: float) -> 'ApiClient':
        return self.set_option('timeout', seconds)

    def set_connect_timeout(self, seconds: float) -> 'ApiClient':
        return self.set_option('connect_timeout', seconds)

    def set_cookie_options(self, cookies: Mapping[str, str]) -> 'ApiClient':
        return self.set_option('cookies', dict(cookies))

    def set_body(self, body: Any, encoded: bool = True) -> 'ApiClient':
        self.__body = body
        self.__encode_body = encoded
        return self

    def set_decode(self, auto: bool = True) -> 'ApiClient':
        self.__decode = auto
        return self

    def decode(self, auto: bool = True) -> 'ApiClient':
        return self.set_decode(auto)

    def no_decode(self) -> 'ApiClient':
        return self.set_decode(False)

    def set_method(self, verb: Union[str, Verb]) -> 'ApiClient':
        self.__verb = Verb.parse(verb)
        return self

    def set_retries(self, attempts: int) -> 'ApiClient':
        self.__max_retries = attempts
        return self

    def disable_ssl(self) -> 'ApiClient':
        self.__tls = TlsPolicy.disabled()
        return self

    def without_strict_ssl(self) -> 'ApiClient':
        return self.disable_ssl()

    def set_ssl_cert(self, ca_path: Union[str, Path]) -> 'ApiClient':
        self.__tls = TlsPolicy.custom(str(ca_path))
        return self

    def certificate(self, ca_path: Union[str, Path]) -> 'ApiClient':
        return self.set_ssl_cert(ca_path)

    def use_cookie_jar(self, cookie_file: Union[None, str, Path] = None) -> 'ApiClient':
        if cookie_file is None:
            cookie_file = self._settings().cache_dir / 'cookies.txt'
        self.__cookie_jar = CookieJar(cookie_file)
        return self

    def log_requests(self, target: Union[None, str, Path, RecordSink] = None) -> 'ApiClient':
        self.__request_sink = as_sink(target)
        return self

    def log_responses(self, target: Union[None, str, Path, RecordSink] = None) -> 'ApiClient':
        self.__response_sink = as_sink(target)
        return self

    def when(self, condition: Any, on_true: Callable[..., Any],
             on_false: Optional[Callable[..., Any]] = None, *args: Any) -> 'ApiClient':
        """
        Call `on_true(self, *args)` if `condition` holds, else `on_false`.
        """
        if condition:
            on_true(self, *args)
        elif on_false is not None:
            on_false(self, *args)
        return self

    def mock(self, payload: Any, allow_empty: bool = False) -> 'ApiClient':
        """
        Replace every following dispatch with `payload`.

        Must be called *before* `request()`, `get()`, `post()`, etc. See
        `MockOverlay.arm()` for how file paths are handled.
        """
        stored = self.__mock.arm(payload, allow_empty=allow_empty, decode=self.__decode)
        self.__response = stored
        self.__raw_response = stored
        return self

    # endregion

    # region Cache

    def set_cache(self, ttl: int = 60) -> 'ApiClient':
        """
        @param ttl
          Seconds for which cached responses stay fresh.
        """
        self.__ttl = ttl
        return self

    def cache(self, ttl: int = 60) -> 'ApiClient':
        return self.set_cache(ttl)

    def cache_until(self, until: datetime) -> 'ApiClient':
        now = datetime.now(until.tzinfo)
        return self.set_cache(int((until - now).total_seconds()))

    def enable_post_request_cache(self) -> 'ApiClient':
        self.__policy.post_requests = True
        return self

    def read_only(self, flag: bool = True) -> 'ApiClient':
        self.__policy.read_only = flag
        return self

    def cacheable_status_codes(self, codes: Iterable[int]) -> 'ApiClient':
        """
        Cache exactly these statuses, even error ones, instead of 2xx/3xx.
        """
        self.__policy.allow_statuses(codes)
        return self

    def cache_key(self) -> str:
        """
        @throws ConfigurationError
          If no URL is set.
        """
        url = add_query_params(self.__url, self.__query_params) if self.__url else None
        return fingerprint(url, self.__verb, self.__body, self.__policy.post_requests)

    def clear_cache(self) -> 'ApiClient':
        """
        @throws CacheDeleteError
          If there is nothing cached for the current request.
        """
        self._response_cache().clear(self.cache_key())
        return self

    def _response_cache(self) -> Cache:
        if self.__cache is None:
            settings = self._settings()
            self.__cache = HttpAwareCache(FileCache(settings.cache_dir, settings.cache_levels), self.__policy)
        return self.__cache

    def _caching(self) -> bool:
        return bool(self.__ttl) and self.__ttl > 0 and self.__policy.is_cacheable_method(self.__verb)

    def _cached_response(self) -> Optional[ResponseEnvelope]:
        entry = self._response_cache().lookup(self.cache_key())
        return entry.envelope if entry is not None else None

    def _save_response(self, envelope: ResponseEnvelope) -> None:
        if self.__policy.read_only:
            return
        try:
            key = self.cache_key()
        except ConfigurationError:
            return
        self._response_cache().store(key, envelope, self.__ttl)

    # endregion

    # region Dispatch

    def request(self, url: Optional[str], verb: Union[str, Verb], body: Any = None,
                headers: Union[None, Mapping[str, Any], Iterable[str]] = None,
                options: Optional[Mapping[str, Any]] = None, tls: TlsSetting = None) -> 'ApiClient':
        if self.__mock.armed:
            logger.info('Returning mocked response without sending the request.')
            return self

        settings = self._settings()
        spec = self._build_spec(url, verb, body, headers, options, tls, settings)

        if self.__request_sink is not None:
            self.__request_sink.write(self.dump())

        caching = self._caching()
        if caching:
            cached = self._cached_response()
            if cached is not None:
                logger.info('Serving {} {} from the cache.'.format(spec.verb.value, spec.url))
                self._absorb(cached)
                return self

        self.__controller.sleep_time = settings.sleep_time
        self.__controller.guard_interval = settings.throttle_guard
        envelope, attempts = self.__controller.dispatch(spec, self.__max_retries, self.__cookie_jar)
        self._absorb(envelope)

        if self.__response_sink is not None:
            self.__response_sink.write(self._result(self.__response))

        if caching:
            self._save_response(envelope)

        return self

    def get(self, url: Optional[str] = None, headers=None, options=None) -> 'ApiClient':
        return self.request(url, Verb.GET, None, headers, options)

    def head(self, url: Optional[str] = None, headers=None, options=None) -> 'ApiClient':
        return self.request(url, Verb.HEAD, None, headers, options)

    def delete(self, url: Optional[str] = None, headers=None, options=None) -> 'ApiClient':
        return self.request(url, Verb.DELETE, None, headers, options)

    def post(self, url: Optional[str] = None, body: Any = None, headers=None, options=None) -> 'ApiClient':
        return self.request(url, Verb.POST, body, headers, options)

    def put(self, url: Optional[str] = None, body: Any = None, headers=None, options=None) -> 'ApiClient':
        return self.request(url, Verb.PUT, body, headers, options)

    def patch(self, url: Optional[str] = None, body: Any = None, headers=None, options=None) -> 'ApiClient':
        return self.request(url, Verb.PATCH, body, headers, options)

    def send(self, url: Optional[str] = None, body: Any = None, headers=None, options=None) -> 'ApiClient':
        """Dispatch with the verb chosen through `set_method()`."""
        return self.request(url, self.__verb, body, headers, options)

    def exec(self, args: Mapping[str, Any]) -> 'ApiClient':
        """
        Replay a request described the way `dump()` describes it.
        """
        self.__verb = Verb.parse(args['verb'])
        self.__headers = normalize_headers(args.get('headers'))
        self.__body = args.get('body')
        self.__options = dict(args.get('options') or {})
        self.__encode_body = args.get('encode_body', True)
        self.__max_retries = args.get('max_retries', 1)
        self.__tls = _as_tls_policy(args.get('ssl'))
        return self.request(args['url'], self.__verb)

    def download(self, path: Union[str, Path], url: Optional[str] = None,
                 headers=None, options=None) -> int:
        """
        Stream the body of a GET straight into `path`, bypassing mock, cache and
        retries.

        @return
          The number of bytes written.
        """
        spec = self._build_spec(url, Verb.GET, None, headers, options, None, self._settings())
        envelope, written = self.__transport.download(spec, path, self.__cookie_jar)
        self._absorb(envelope)
        return written

    def _build_spec(self, url, verb, body, headers, options, tls, settings: Settings) -> RequestSpec:
        url = resolve(url, self.__url)
        if not url:
            raise ConfigurationError('Param url is needed. Set it in the call, the constructor or set_url()')

        self.__url = normalize_url(url)
        self.__verb = Verb.parse(verb)
        self.__body = resolve(body, self.__body)
        if headers is not None:
            request_headers = normalize_headers(headers)
        else:
            request_headers = CaseInsensitiveDict(self.__headers)

        return RequestSpec(
            url=add_query_params(self.__url, self.__query_params),
            verb=self.__verb,
            headers=request_headers,
            body=self.__body,
            encode_body=self.__encode_body,
            transport_options={**self.__options, **(options or {})},
            tls=self._resolve_tls(_as_tls_policy(tls), settings),
        )

    def _resolve_tls(self, call_site: Optional[TlsPolicy], settings: Settings) -> TlsPolicy:
        ssl_cert = settings.ssl_cert
        configured = None
        if ssl_cert is False:
            configured = TlsPolicy.disabled()
        elif ssl_cert:
            configured = TlsPolicy.custom(ssl_cert)
        return resolve(call_site, self.__tls, configured, default=TlsPolicy.verify())

    def _settings(self) -> Settings:
        return self.__settings if self.__settings is not None else get_settings()

    def _absorb(self, envelope: ResponseEnvelope) -> None:
        self.__envelope = envelope
        self.__status = envelope.status_code
        self.__error = envelope.error_message
        text = envelope.text
        decoded = interpret(text, envelope.content_type, self.__decode)
        envelope.decoded_body = decoded if decoded is not text else None
        self.__raw_response = text
        self.__response = text

    # endregion

    # region Accessors

    def get_status(self) -> Optional[int]:
        return self.__status

    def status(self) -> Optional[int]:
        return self.get_status()

    def get_error(self) -> Optional[str]:
        return self.__error

    def error(self) -> Optional[str]:
        return self.get_error()

    def get_raw_response(self) -> Any:
        return self.__raw_response

    def get_envelope(self) -> Optional[ResponseEnvelope]:
        return self.__envelope

    def data(self, raw: bool = False) -> Any:
        if raw:
            return self.__raw_response
        return decode_json(self.__response, self.__decode)

    def get_body(self) -> Any:
        return self.data()

    def get_data_or_fail(self, raw: bool = False) -> Any:
        """
        @throws ApiError
          If the last dispatch recorded an error.
        """
        if self.__error:
            raise ApiError(self.__error)
        return self.data(raw)

    def get_response(self, decode: Optional[bool] = None) -> dict:
        """
        The payload decoded according to its content type, alongside the status
        and error.
        """
        decode = resolve(decode, self.__decode)
        return self._result(interpret(self.__response, self.get_content_type(), decode))

    def get_headers(self) -> Mapping[str, str]:
        return self.__envelope.response_headers if self.__envelope is not None else {}

    def get_request_headers(self) -> CaseInsensitiveDict:
        return self.__headers

    def get_content_type(self) -> Optional[str]:
        return self.__envelope.content_type if self.__envelope is not None else None

    def get_effective_url(self) -> Optional[str]:
        return self.__envelope.effective_url if self.__envelope is not None else None

    def get_filename(self) -> Optional[str]:
        return self.__envelope.advertised_filename if self.__envelope is not None else None

    def dump(self) -> dict:
        try:
            key = self.cache_key()
        except ConfigurationError:
            key = None
        return {
            'url': self.__url,
            'verb': self.__verb.value,
            'headers': dict(self.__headers),
            'options': dict(self.__options),
            'body': self.__body,
            'encode_body': self.__encode_body,
            'max_retries': self.__max_retries,
            'ssl': self.__tls,
            'cache_key': key,
        }

    def _result(self, data: Any) -> dict:
        return {
            'data': data,
            'http_code': self.__status,
            'error': self.__error,
        }

    # endregion
