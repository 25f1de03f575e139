from ddt import ddt, data, unpack
from mockito import mock, unstub, verify, when
from unittest import TestCase

from cachedclient.model import RequestSpec, ResponseEnvelope, Verb
from cachedclient.throttle import RetryController, ThrottleState
from cachedclient.transport import Transport


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def spec_for(url: str) -> RequestSpec:
    return RequestSpec(url=url, verb=Verb.GET)


FAILURE = ResponseEnvelope(status_code=0, error_message='Failed to connect: Connection refused')
SUCCESS = ResponseEnvelope(status_code=200, raw_body=b'ok')


class TestThrottleState(TestCase):
    def test_touch(self):
        state = ThrottleState()

        self.assertNotIn('a.com', state)
        state.touch('a.com', 5.0)

        self.assertIn('a.com', state)
        self.assertEqual(5.0, state.last_attempt('a.com'))
        self.assertIsNone(state.last_attempt('b.com'))
        self.assertEqual(1, len(state))


@ddt
class TestRetryController(TestCase):
    def setUp(self):
        self.transport = mock(Transport)
        self.clock = FakeClock()

    def tearDown(self):
        unstub()

    def controller(self, sleep_time=None, guard_interval=1.0) -> RetryController:
        return RetryController(self.transport, sleep_time=sleep_time, guard_interval=guard_interval,
                               clock=self.clock, sleep=self.clock.sleep)

    @data(1, 2, 5)
    def test_exhausts_attempts_on_persistent_failure(self, max_attempts):
        when(self.transport).send(...).thenReturn(FAILURE)

        envelope, attempts = self.controller().dispatch(spec_for('http://a.com/x'), max_attempts)

        self.assertIs(FAILURE, envelope)
        self.assertEqual(max_attempts, attempts)
        verify(self.transport, times=max_attempts).send(...)

    def test_stops_at_first_success(self):
        when(self.transport).send(...).thenReturn(FAILURE, FAILURE, SUCCESS, FAILURE)

        envelope, attempts = self.controller().dispatch(spec_for('http://a.com/x'), 5)

        self.assertIs(SUCCESS, envelope)
        self.assertEqual(3, attempts)

    @data(
        # HTTP error statuses are not transport errors.
        (ResponseEnvelope(status_code=500, raw_body=b''),),
        (ResponseEnvelope(status_code=404, error_message=''),),
    )
    @unpack
    def test_error_free_envelope_ends_the_loop(self, envelope):
        when(self.transport).send(...).thenReturn(envelope)

        _, attempts = self.controller().dispatch(spec_for('http://a.com/x'), 3)

        self.assertEqual(1, attempts)

    @data(0, -3)
    def test_makes_at_least_one_attempt(self, max_attempts):
        when(self.transport).send(...).thenReturn(FAILURE)

        _, attempts = self.controller().dispatch(spec_for('http://a.com/x'), max_attempts)

        self.assertEqual(1, attempts)

    def test_no_pacing_without_sleep_time(self):
        when(self.transport).send(...).thenReturn(SUCCESS)
        controller = self.controller()

        controller.dispatch(spec_for('http://a.com/x'), 1)
        controller.dispatch(spec_for('http://a.com/y'), 1)

        self.assertEqual([], self.clock.sleeps)

    def test_paces_recent_requests_to_the_same_domain(self):
        when(self.transport).send(...).thenReturn(SUCCESS)
        controller = self.controller(sleep_time=2)

        controller.dispatch(spec_for('http://a.com/x'), 1)
        self.clock.now += 0.5
        controller.dispatch(spec_for('http://a.com/y'), 1)

        self.assertEqual([2], self.clock.sleeps)

    def test_does_not_pace_after_the_guard_interval(self):
        when(self.transport).send(...).thenReturn(SUCCESS)
        controller = self.controller(sleep_time=2)

        controller.dispatch(spec_for('http://a.com/x'), 1)
        self.clock.now += 1.0
        controller.dispatch(spec_for('http://a.com/y'), 1)

        self.assertEqual([], self.clock.sleeps)

    def test_different_domains_never_pace_each_other(self):
        when(self.transport).send(...).thenReturn(SUCCESS)
        controller = self.controller(sleep_time=2)

        controller.dispatch(spec_for('http://a.com/x'), 1)
        controller.dispatch(spec_for('http://b.com/x'), 1)
        controller.dispatch(spec_for('http://c.com/x'), 1)

        self.assertEqual([], self.clock.sleeps)

    def test_retries_are_paced(self):
        when(self.transport).send(...).thenReturn(FAILURE)
        controller = self.controller(sleep_time=2)

        controller.dispatch(spec_for('http://a.com/x'), 3)

        self.assertEqual([2, 2], self.clock.sleeps)

    def test_state_is_updated_after_every_attempt(self):
        when(self.transport).send(...).thenReturn(FAILURE)
        controller = self.controller()

        self.clock.now = 42.0
        controller.dispatch(spec_for('http://a.com/x'), 2)

        self.assertEqual(42.0, controller.state.last_attempt('a.com'))

    def test_state_is_per_controller(self):
        when(self.transport).send(...).thenReturn(SUCCESS)
        first = self.controller(sleep_time=2)
        second = self.controller(sleep_time=2)

        first.dispatch(spec_for('http://a.com/x'), 1)
        second.dispatch(spec_for('http://a.com/x'), 1)

        self.assertEqual([], self.clock.sleeps)
