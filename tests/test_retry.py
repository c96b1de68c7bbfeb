import pytest

from invoicectl.retry import RetryPolicy


def test_default_schedule():
    policy = RetryPolicy()
    assert [policy.delay(n) for n in (1, 2, 3)] == [20, 40, 60]


def test_ceiling():
    policy = RetryPolicy(max_retries=2, base=5)
    assert policy.should_retry(0)
    assert policy.should_retry(1)
    assert not policy.should_retry(2)


def test_attempt_is_one_based():
    with pytest.raises(ValueError):
        RetryPolicy().delay(0)
