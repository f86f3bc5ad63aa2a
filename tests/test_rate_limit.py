from unittest.mock import MagicMock

import pytest

from roster_aligner.errors import PlatformError, RateLimitedError, RetriesExhaustedError
from roster_aligner.models import NotFound, RateLimited


def test_returns_first_non_rate_limited_result(caller, sleeps):
    fn = MagicMock(side_effect=[RateLimited(2), RateLimited(None), "ok"])
    assert caller.call(fn, "x", description="lookup") == "ok"
    assert fn.call_count == 3
    # retry_after * 2**attempt, base_backoff when no hint
    assert sleeps == [2.0, 3.0]


def test_retries_on_raised_rate_limit(caller, sleeps):
    fn = MagicMock(side_effect=[RateLimitedError("op", 1.0), NotFound()])
    assert caller.call(fn) == NotFound()
    assert sleeps == [1.0]


def test_gives_up_after_max_retries(caller, sleeps):
    fn = MagicMock(return_value=RateLimited(1))
    with pytest.raises(RetriesExhaustedError) as exc:
        caller.call(fn, description="lookup")
    # max_retries=3 -> 4 attempts, no sleep after the last one
    assert fn.call_count == 4
    assert sleeps == [1.0, 2.0, 4.0]
    assert exc.value.attempts == 4
    assert isinstance(exc.value, PlatformError)


def test_other_errors_propagate_immediately(caller, sleeps):
    fn = MagicMock(side_effect=PlatformError("op", "boom"))
    with pytest.raises(PlatformError):
        caller.call(fn)
    assert fn.call_count == 1
    assert sleeps == []


def test_batches_pause_after_each_chunk(caller, sleeps):
    chunks = list(caller.batches(["a", "b", "c", "d", "e"]))
    assert chunks == [["a", "b"], ["c", "d"], ["e"]]
    assert sleeps == [1.5, 1.5, 1.5]


def test_space_and_pause(caller, sleeps):
    caller.space()
    caller.pause(0.2)
    caller.pause(0)
    assert sleeps == [0.3, 0.2]
