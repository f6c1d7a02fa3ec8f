import threading
from unittest import mock

import pytest

from gputelemetry.retry import Cancelled, DeadlineExceeded, retry_with_backoff


def test_succeeds_immediately():
    calls = []

    def fn():
        calls.append(1)
        return "up"

    assert retry_with_backoff(fn, "test") == "up"
    assert len(calls) == 1


def test_succeeds_after_transient_failures():
    calls = []

    def fn():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("not ready yet")
        return True

    assert retry_with_backoff(fn, "test") is True
    assert len(calls) == 3


def test_respects_cancellation():
    stop = threading.Event()
    timer = threading.Timer(0.05, stop.set)
    timer.start()

    def fn():
        raise ConnectionError("always fails")

    try:
        with pytest.raises(Cancelled) as info:
            retry_with_backoff(fn, "test", stop=stop)
    finally:
        timer.cancel()
    assert isinstance(info.value.__cause__, ConnectionError)


def test_stops_at_deadline():
    def fn():
        raise ConnectionError("always fails")

    with pytest.raises(DeadlineExceeded) as info:
        retry_with_backoff(fn, "test", timeout=0.1)
    assert isinstance(info.value.__cause__, ConnectionError)


def test_success_wins_even_if_already_stopped():
    stop = threading.Event()
    stop.set()
    assert retry_with_backoff(lambda: 7, "test", stop=stop) == 7


def test_backoff_doubles_and_caps():
    failures = {"left": 12}

    def fn():
        if failures["left"]:
            failures["left"] -= 1
            raise ConnectionError("down")
        return "ok"

    with mock.patch("gputelemetry.retry.time.sleep") as sleep:
        assert retry_with_backoff(fn, "test") == "ok"

    delays = [call.args[0] for call in sleep.call_args_list]
    assert len(delays) == 12
    assert delays[0] == pytest.approx(0.2)
    assert max(delays) == pytest.approx(10.0)
    assert delays[-1] == pytest.approx(10.0)
    for prev, cur in zip(delays, delays[1:]):
        assert prev <= cur <= prev * 2 + 1e-9