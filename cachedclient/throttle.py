"""
Repeats a transport call until it succeeds, pacing calls per domain.
"""

import logging
import time
from typing import Callable, Dict, Optional, Tuple

from .cookies import CookieJar
from .model import RequestSpec, ResponseEnvelope
from .transport import Transport


logger = logging.getLogger(__name__)

DEFAULT_GUARD_INTERVAL = 1.0


class ThrottleState:
    """
    Remembers when each domain was last hit.

    Owned by a single `RetryController`, so pacing only holds within one
    client's sequence of calls.
    """

    def __init__(self) -> None:
        self.__last_attempt: Dict[str, float] = {}

    def last_attempt(self, domain: Optional[str]) -> Optional[float]:
        return self.__last_attempt.get(domain or '')

    def touch(self, domain: Optional[str], when: float) -> None:
        self.__last_attempt[domain or ''] = when

    def __contains__(self, domain: Optional[str]) -> bool:
        return (domain or '') in self.__last_attempt

    def __len__(self) -> int:
        return len(self.__last_attempt)


class RetryController:
    def __init__(self, transport: Transport,
                 sleep_time: Optional[float] = None,
                 guard_interval: float = DEFAULT_GUARD_INTERVAL,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        """
        @param transport
          Performs the physical calls.
        @param sleep_time
          Seconds to pause before hitting a domain that was hit less than
          `guard_interval` seconds ago. `None` disables pacing.
        @param guard_interval
          How recent the last attempt to a domain must be for pacing to apply.
        """
        self.__transport = transport
        self.__state = ThrottleState()
        self.sleep_time = sleep_time
        self.guard_interval = guard_interval
        self.__clock = clock
        self.__sleep = sleep

    @property
    def state(self) -> ThrottleState:
        return self.__state

    def dispatch(self, spec: RequestSpec, max_attempts: int,
                 cookies: Optional[CookieJar] = None) -> Tuple[ResponseEnvelope, int]:
        """
        Send `spec` until an attempt comes back without an error, or
        `max_attempts` attempts have been made.

        @return
          The last envelope and the number of physical calls made.
        """
        max_attempts = max(1, int(max_attempts))
        domain = spec.hostname
        attempts = 0

        while True:
            self._pace(domain)
            envelope = self.__transport.send(spec, cookies)
            attempts += 1
            self.__state.touch(domain, self.__clock())

            if not envelope.has_error:
                logger.info('{} {} succeeded after {} attempt(s)'.format(spec.verb.value, spec.url, attempts))
                break
            if attempts >= max_attempts:
                logger.warning('{} {} failed after {} attempt(s): {}'.format(
                    spec.verb.value, spec.url, attempts, envelope.error_message))
                break
            logger.info('Attempt {} of {} to {} failed: {}'.format(
                attempts, max_attempts, spec.url, envelope.error_message))

        return envelope, attempts

    def _pace(self, domain: Optional[str]) -> None:
        if not self.sleep_time:
            return
        last = self.__state.last_attempt(domain)
        if last is None:
            return
        if self.__clock() - last < self.guard_interval:
            logger.info('Pausing {}s before the next request to {}'.format(self.sleep_time, domain))
            self.__sleep(self.sleep_time)
