"""
Unit tests for the transport wrapper: pacing, timeout race and retries.
"""

import threading

import pytest

from squash.config import MinimizationConfig
from squash.errors import RequestTimeoutError, TransportError
from squash.models import RequestSpec
from squash.transport import TransportWrapper

from fakes import FakeTransport, make_response


@pytest.fixture
def spec():
    return RequestSpec(method="GET", host="example.test", port=443, tls=True, path="/")


class Script:
    """Responder returning the queued results in order."""

    def __init__(self, *results):
        self.results = list(results)

    def __call__(self, spec):
        return self.results.pop(0)


class TestRetries:
    def test_success_first_attempt_paces_once(self, spec):
        sleeps = []
        transport = FakeTransport(Script(make_response()))
        wrapper = TransportWrapper(transport, MinimizationConfig(min_delay_ms=250, timeout_ms=0), sleep=sleeps.append)

        response = wrapper.send(spec)

        assert response.status_code == 200
        assert sleeps == [0.25]
        assert wrapper.attempts == 1

    def test_timeout_is_retried_max_retries_times_then_raised(self, spec):
        sleeps = []
        transport = FakeTransport(lambda s: RequestTimeoutError("slow"))
        config = MinimizationConfig(min_delay_ms=100, timeout_ms=0, max_retries=2)
        wrapper = TransportWrapper(transport, config, sleep=sleeps.append)

        with pytest.raises(RequestTimeoutError):
            wrapper.send(spec)

        assert len(transport.sent) == 3
        assert sleeps == [0.1, 0.1, 0.1]

    def test_recovers_after_transient_failure(self, spec):
        transport = FakeTransport(Script(TransportError("reset"), make_response(status=204, body=b"")))
        wrapper = TransportWrapper(transport, MinimizationConfig(min_delay_ms=0, timeout_ms=0), sleep=lambda s: None)

        assert wrapper.send(spec).status_code == 204
        assert len(transport.sent) == 2

    def test_zero_retries(self, spec):
        transport = FakeTransport(lambda s: TransportError("down"))
        config = MinimizationConfig(min_delay_ms=0, timeout_ms=0, max_retries=0)

        with pytest.raises(TransportError):
            TransportWrapper(transport, config, sleep=lambda s: None).send(spec)
        assert len(transport.sent) == 1

    def test_missing_response_is_not_retried(self, spec):
        transport = FakeTransport(lambda s: None)
        wrapper = TransportWrapper(transport, MinimizationConfig(min_delay_ms=0, timeout_ms=0), sleep=lambda s: None)

        assert wrapper.send(spec) is None
        assert len(transport.sent) == 1

    def test_save_flag_is_forwarded(self, spec):
        transport = FakeTransport(lambda s: make_response())
        config = MinimizationConfig(min_delay_ms=0, timeout_ms=0, save_to_history=True)
        TransportWrapper(transport, config, sleep=lambda s: None).send(spec)
        assert transport.saves == [True]


class TestTimeoutRace:
    def test_slow_transport_loses_the_race(self, spec):
        release = threading.Event()

        def hang(s):
            release.wait(2)
            return make_response()

        transport = FakeTransport(hang)
        config = MinimizationConfig(min_delay_ms=0, timeout_ms=50, max_retries=1)
        wrapper = TransportWrapper(transport, config, sleep=lambda s: None)
        try:
            with pytest.raises(RequestTimeoutError):
                wrapper.send(spec)
            assert wrapper.attempts == 2
        finally:
            release.set()

    def test_fast_transport_wins_the_race(self, spec):
        transport = FakeTransport(lambda s: make_response(body=b"fast"))
        config = MinimizationConfig(min_delay_ms=0, timeout_ms=5000)
        wrapper = TransportWrapper(transport, config, sleep=lambda s: None)
        assert wrapper.send(spec).body == b"fast"

    def test_transport_error_on_worker_thread_is_retried(self, spec):
        transport = FakeTransport(Script(TransportError("reset"), make_response()))
        config = MinimizationConfig(min_delay_ms=0, timeout_ms=5000, max_retries=1)
        wrapper = TransportWrapper(transport, config, sleep=lambda s: None)
        assert wrapper.send(spec).status_code == 200
        assert len(transport.sent) == 2

    def test_hung_attempts_do_not_starve_the_last_retry(self, spec):
        release = threading.Event()
        calls = []
        lock = threading.Lock()

        def hang_twice(s):
            with lock:
                calls.append(s)
                call = len(calls)
            if call <= 2:
                release.wait(5)
            return make_response(body=b"third")

        transport = FakeTransport(hang_twice)
        config = MinimizationConfig(min_delay_ms=0, timeout_ms=200, max_retries=2)
        wrapper = TransportWrapper(transport, config, sleep=lambda s: None)
        try:
            response = wrapper.send(spec)
        finally:
            release.set()

        assert len(calls) == 3
        assert response.body == b"third"
        assert wrapper.attempts == 3

    def test_trials_after_a_hung_attempt_still_reach_the_transport(self, spec):
        release = threading.Event()
        calls = []
        lock = threading.Lock()

        def hang_first(s):
            with lock:
                calls.append(s)
                call = len(calls)
            if call == 1:
                release.wait(5)
            return make_response()

        transport = FakeTransport(hang_first)
        config = MinimizationConfig(min_delay_ms=0, timeout_ms=200, max_retries=0)
        wrapper = TransportWrapper(transport, config, sleep=lambda s: None)
        try:
            with pytest.raises(RequestTimeoutError):
                wrapper.send(spec)
            assert [wrapper.send(spec).status_code for _ in range(3)] == [200, 200, 200]
        finally:
            release.set()

        assert len(calls) == 4
