import logging
import random
import threading
import time

import pytest
import requests

from sofia_fees.http_helper import QueueConfig, RequestQueue


class FakeResponse:
    def __init__(self, status_code: int):
        self.status_code = status_code


def scripted(*outcomes):
    """request_fn that returns/raises the given outcomes in order."""
    calls = []
    items = list(outcomes)

    def fn():
        calls.append(1)
        item = items.pop(0)
        if isinstance(item, Exception):
            raise item
        return FakeResponse(item)

    fn.calls = calls
    return fn


def make_queue(clock, rng=lambda: 0.5, **overrides):
    return RequestQueue(QueueConfig(**overrides), clock=clock, sleep=clock.sleep, rng=rng)


class TestSubmit:
    def test_success_returns_immediately(self, clock):
        q = make_queue(clock)
        resp = q.submit(scripted(200))
        assert resp.status_code == 200
        assert clock.sleeps == []
        assert q.consecutive_failures == 0

    def test_retries_429_then_succeeds(self, clock):
        q = make_queue(clock)
        fn = scripted(429, 429, 429, 200)
        resp = q.submit(fn)
        assert resp.status_code == 200
        assert len(fn.calls) == 4
        # rng=0.5 puts jitter exactly on the midpoint: 2s, 4s, 8s
        assert clock.sleeps == pytest.approx([2.0, 4.0, 8.0])
        assert q.consecutive_failures == 0

    def test_exhausted_429_returns_last_response(self, clock):
        q = make_queue(clock, max_retries=2)
        fn = scripted(429, 429, 429)
        resp = q.submit(fn)
        assert resp.status_code == 429
        assert len(fn.calls) == 3

    def test_exhausted_transport_error_is_raised(self, clock):
        q = make_queue(clock, max_retries=2)
        fn = scripted(
            requests.ConnectionError("reset"),
            requests.Timeout("slow"),
            requests.ConnectionError("reset again"),
        )
        with pytest.raises(requests.ConnectionError, match="reset again"):
            q.submit(fn)
        assert len(fn.calls) == 3

    def test_transport_error_then_success(self, clock):
        q = make_queue(clock)
        resp = q.submit(scripted(requests.ConnectionError("reset"), 200))
        assert resp.status_code == 200

    @pytest.mark.parametrize("error", [
        requests.exceptions.MissingSchema("no scheme"),
        requests.exceptions.InvalidURL("bad url"),
        requests.exceptions.InvalidSchema("ftp"),
    ])
    def test_configuration_errors_raise_without_retry(self, clock, error):
        q = make_queue(clock)
        fn = scripted(error, 200)
        with pytest.raises(type(error)):
            q.submit(fn)
        assert len(fn.calls) == 1
        assert clock.sleeps == []
        assert q.consecutive_failures == 0

    def test_chunked_encoding_error_is_retried(self, clock):
        q = make_queue(clock)
        fn = scripted(requests.exceptions.ChunkedEncodingError("truncated"), 200)
        assert q.submit(fn).status_code == 200
        assert len(fn.calls) == 2

    def test_non_429_errors_are_not_retried(self, clock):
        q = make_queue(clock)
        fn = scripted(503)
        assert q.submit(fn).status_code == 503
        assert len(fn.calls) == 1


class TestBackoff:
    def test_kth_backoff_midpoint_and_jitter(self, clock):
        q = make_queue(clock, rng=random.Random(7).random, max_retries=6)
        q.submit(scripted(*[429] * 7))
        midpoints = [2000, 4000, 8000, 16000, 30000, 30000, 30000]
        # the final backoff is computed but not slept: the 429 goes back to the caller
        assert len(clock.sleeps) == len(midpoints) - 1
        for slept, mid in zip(clock.sleeps, midpoints):
            assert 0.8 * mid / 1000 <= slept <= 1.2 * mid / 1000

    def test_midpoint_formula(self):
        q = RequestQueue(QueueConfig(base_backoff_ms=1000, max_backoff_ms=5000, backoff_multiplier=3))
        assert [q.backoff_midpoint_ms(k) for k in (1, 2, 3)] == [1000, 3000, 5000]

    def test_jitter_extremes(self, clock):
        low = make_queue(clock, rng=lambda: 0.0)
        low.submit(scripted(429, 200))
        assert low.last_backoff_ms == pytest.approx(1600)

        high = make_queue(clock, rng=lambda: 0.999999)
        high.submit(scripted(429, 200))
        assert high.last_backoff_ms == pytest.approx(2400, rel=1e-5)

    def test_backoff_is_logged(self, clock, caplog):
        q = make_queue(clock)
        with caplog.at_level(logging.WARNING, logger="sofia_fees.http_helper"):
            q.submit(scripted(429, 200))
        assert "429" in caplog.text
        assert "x1" in caplog.text
        assert "Backoff: 2000ms" in caplog.text

    def test_counter_resets_after_success(self, clock):
        q = make_queue(clock)
        q.submit(scripted(429, 200))
        q.submit(scripted(429, 200))
        # second failure streak starts again at the base window
        assert q.last_backoff_ms == pytest.approx(2000)


class TestPacing:
    def test_min_delay_between_dispatches(self, clock):
        q = make_queue(clock, min_delay_ms=500)
        q.submit(scripted(200))
        q.submit(scripted(200))
        assert clock.sleeps == pytest.approx([0.5])

    def test_no_delay_when_enough_time_passed(self, clock):
        q = make_queue(clock, min_delay_ms=500)
        q.submit(scripted(200))
        clock.now += 1.0
        q.submit(scripted(200))
        assert clock.sleeps == []

    def test_defaults(self):
        cfg = QueueConfig()
        assert (cfg.min_delay_ms, cfg.base_backoff_ms, cfg.max_backoff_ms) == (500, 2000, 30000)
        assert (cfg.backoff_multiplier, cfg.max_retries) == (2.0, 4)


def _wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.005)


def test_single_slot_fifo_across_threads():
    q = RequestQueue(QueueConfig(min_delay_ms=0))
    gate = threading.Event()
    order = []
    in_flight = []
    max_in_flight = []

    def request(tag):
        def fn():
            in_flight.append(tag)
            max_in_flight.append(len(in_flight))
            if tag == 1:
                gate.wait(5)
            order.append(tag)
            in_flight.remove(tag)
            return FakeResponse(200)
        return fn

    threads = []
    for tag in (1, 2, 3):
        t = threading.Thread(target=q.submit, args=(request(tag),))
        t.start()
        threads.append(t)
        if tag == 1:
            _wait_until(lambda: q.active)
        else:
            _wait_until(lambda tag=tag: q.queued == tag - 1)

    gate.set()
    for t in threads:
        t.join(5)

    assert order == [1, 2, 3]
    assert max(max_in_flight) == 1
    assert not q.active and q.queued == 0
