"""
File-backed cookie persistence shared between separate request calls.
"""

from http.cookiejar import LoadError, MozillaCookieJar
import logging
from pathlib import Path
from typing import Union

from requests.cookies import RequestsCookieJar


logger = logging.getLogger(__name__)


class CookieJar:
    """
    A single Mozilla-format cookie file, read before and written after every
    physical call.

    There is no locking. Two processes sharing the file may interleave writes.
    """

    def __init__(self, cookie_file: Union[str, Path]) -> None:
        self.__cookie_file = Path(cookie_file)

    @property
    def cookie_file(self) -> Path:
        return self.__cookie_file

    def load_into(self, jar: RequestsCookieJar) -> None:
        if not self.__cookie_file.exists():
            return
        stored = MozillaCookieJar(str(self.__cookie_file))
        try:
            stored.load(ignore_discard=True, ignore_expires=True)
        except LoadError:
            logger.warning('Ignoring unreadable cookie file {}'.format(self.__cookie_file))
            return
        for cookie in stored:
            jar.set_cookie(cookie)
        logger.debug('Loaded {} cookie(s) from {}'.format(len(stored), self.__cookie_file))

    def save_from(self, jar: RequestsCookieJar) -> None:
        stored = MozillaCookieJar(str(self.__cookie_file))
        for cookie in jar:
            stored.set_cookie(cookie)
        self.__cookie_file.parent.mkdir(parents=True, exist_ok=True)
        stored.save(ignore_discard=True, ignore_expires=True)
        logger.debug('Saved {} cookie(s) to {}'.format(len(stored), self.__cookie_file))
