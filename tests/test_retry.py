"""
재시도 실행 모듈 테스트
"""

import pytest
from tunnel_agent.errors import TransientExternalError
from tunnel_agent.retry import Failure, RetryPolicy, Success, run_with_retry


def test_always_failing_action_runs_exactly_max_attempts(no_sleep):
    sleep, delays = no_sleep
    calls = []

    def action():
        calls.append(1)
        raise TransientExternalError("mirror unreachable")

    outcome = run_with_retry(action, RetryPolicy(max_attempts=3, delay=2), sleep=sleep)

    assert isinstance(outcome, Failure)
    assert not outcome.ok
    assert outcome.attempts == 3
    assert len(calls) == 3
    assert str(outcome.last_error) == "mirror unreachable"
    # 마지막 시도 후에는 대기하지 않음
    assert delays == [2, 2]


def test_returns_first_success(no_sleep):
    sleep, delays = no_sleep
    results = iter([TransientExternalError("flaky"), "installed"])

    def action():
        value = next(results)
        if isinstance(value, Exception):
            raise value
        return value

    outcome = run_with_retry(action, RetryPolicy(max_attempts=5, delay=0.5), sleep=sleep)

    assert isinstance(outcome, Success)
    assert outcome.ok
    assert outcome.value == "installed"
    assert outcome.attempts == 2
    assert delays == [0.5]


def test_immediate_success_does_not_sleep(no_sleep):
    sleep, delays = no_sleep
    outcome = run_with_retry(lambda: 42, RetryPolicy(), sleep=sleep)

    assert outcome.value == 42
    assert outcome.attempts == 1
    assert delays == []


def test_unexpected_errors_propagate(no_sleep):
    sleep, _ = no_sleep

    def action():
        raise KeyError("bug")

    with pytest.raises(KeyError):
        run_with_retry(action, RetryPolicy(max_attempts=3, delay=0), sleep=sleep)


def test_escalate_builds_transient_error(no_sleep):
    sleep, _ = no_sleep

    def action():
        raise OSError("network is unreachable")

    outcome = run_with_retry(action, RetryPolicy(max_attempts=2, delay=0), sleep=sleep)
    error = outcome.escalate("apt-get install tailscale")

    assert isinstance(error, TransientExternalError)
    assert "failed after 2 attempts" in str(error)
    assert "network is unreachable" in str(error)


@pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"delay": -1}])
def test_policy_rejects_invalid_values(kwargs):
    with pytest.raises(ValueError):
        RetryPolicy(**kwargs)
