from __future__ import annotations

import logging
import threading

import pytest

from app.errors import (
    BudgetExhausted,
    CallTimeout,
    ErrorKind,
    ExtractionFailed,
    PolicyViolation,
    TransientFailure,
    describe_error,
    is_retryable,
    kind_of,
)
from services.retry import POOL_SIZE, backoff_delay, busy_threads, call_with_timeout, retry_transient


def test_backoff_is_exponential_and_capped():
    assert [backoff_delay(n, base_delay=1.0, max_delay=5.0) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]


def test_retries_transient_then_succeeds():
    calls = []
    sleeps = []
    retries = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientFailure("connection reset")
        return "ok"

    out = retry_transient(
        flaky,
        attempts=3,
        base_delay=0.5,
        max_delay=10,
        on_retry=lambda n, exc: retries.append(n),
        sleep=sleeps.append,
    )
    assert out == "ok"
    assert len(calls) == 3
    assert retries == [2, 3]
    assert sleeps == [0.5, 1.0]


def test_gives_up_after_bounded_attempts():
    calls = []

    def always_down():
        calls.append(1)
        raise CallTimeout("timed out")

    with pytest.raises(CallTimeout):
        retry_transient(always_down, attempts=2, sleep=lambda s: None)
    assert len(calls) == 2


@pytest.mark.parametrize("exc", [PolicyViolation("no"), BudgetExhausted("empty"), ExtractionFailed("blurry"), ValueError("x")])
def test_non_transient_errors_are_not_retried(exc):
    calls = []

    def boom():
        calls.append(1)
        raise exc

    with pytest.raises(type(exc)):
        retry_transient(boom, attempts=5, sleep=lambda s: None)
    assert len(calls) == 1


def test_retryability_is_structural():
    assert is_retryable(TransientFailure("a"))
    assert is_retryable(CallTimeout("b"))
    # message text does not matter
    assert not is_retryable(PolicyViolation("network timeout"))
    assert not is_retryable(TimeoutError("timeout"))


def test_call_with_timeout_raises_timeout_kind():
    gate = threading.Event()
    with pytest.raises(CallTimeout) as ei:
        call_with_timeout(lambda: gate.wait(2), timeout_s=0.05, label="slow rail")
    gate.set()
    assert ei.value.kind == ErrorKind.TIMEOUT
    assert "slow rail" in str(ei.value)


def test_call_with_timeout_passes_result_and_errors():
    assert call_with_timeout(lambda: 42, timeout_s=1) == 42
    with pytest.raises(PolicyViolation):
        call_with_timeout(lambda: (_ for _ in ()).throw(PolicyViolation("nope")), timeout_s=1)


def test_describe_error_round_trips_kind():
    stored = describe_error(BudgetExhausted("Budget exhausted"))
    assert stored == "BUDGET_EXHAUSTED: Budget exhausted"
    assert kind_of(stored) == ErrorKind.BUDGET_EXHAUSTED

    internal = describe_error(KeyError("x"))
    assert internal.startswith("INTERNAL: KeyError")
    assert kind_of(internal) == ErrorKind.INTERNAL
    assert kind_of("free text") is None
    assert kind_of(None) is None


def test_hung_collaborator_does_not_starve_other_calls(caplog):
    caplog.set_level(logging.WARNING, logger="questpay.retry")
    gate = threading.Event()
    try:
        for _ in range(POOL_SIZE):
            with pytest.raises(CallTimeout):
                call_with_timeout(lambda: gate.wait(5), timeout_s=0.05, label="stuck rail")
        assert busy_threads("stuck rail") == POOL_SIZE

        # queued behind the hung calls, never started
        with pytest.raises(CallTimeout):
            call_with_timeout(lambda: "never", timeout_s=0.05, label="stuck rail")
        assert f"{POOL_SIZE}/{POOL_SIZE} pool threads busy" in caplog.text
        assert "started=False" in caplog.text

        assert call_with_timeout(lambda: "fields", timeout_s=1, label="healthy extractor") == "fields"
    finally:
        gate.set()
