from datetime import timedelta

import pytest

from courier.queue.backoff import backoff_delay


def test_delay_doubles_per_failed_attempt():
    assert [backoff_delay(n) for n in (1, 2, 3)] == [
        timedelta(milliseconds=1000),
        timedelta(milliseconds=2000),
        timedelta(milliseconds=4000),
    ]


def test_custom_base_delay():
    assert backoff_delay(3, base_delay_ms=250) == timedelta(seconds=1)


def test_delay_is_capped():
    assert backoff_delay(10, 1000, max_delay_ms=60_000) == timedelta(minutes=1)
    assert backoff_delay(10, 1000) == timedelta(milliseconds=512_000)


def test_attempt_must_be_positive():
    with pytest.raises(ValueError):
        backoff_delay(0)
