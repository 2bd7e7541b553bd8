"""
Retry Policy Tests
"""

import pytest

from conftest import ts
from offline_sync.models import EntityType, OperationType, SyncOperation


class TestRetryPolicy:
    """Tests for backoff schedule and attempt cap."""

    @pytest.fixture
    def policy(self):
        from offline_sync.retry import RetryPolicy
        return RetryPolicy()

    def test_default_schedule(self, policy):
        assert [policy.delay(n) for n in range(5)] == [1.0, 2.0, 5.0, 10.0, 30.0]
        assert policy.max_attempts == 5

    def test_delay_clamps_to_last_value(self, policy):
        assert policy.delay(5) == 30.0
        assert policy.delay(100) == 30.0

    def test_negative_attempts_use_first_delay(self, policy):
        assert policy.delay(-1) == 1.0

    def test_delays_never_decrease(self, policy):
        delays = [policy.delay(n) for n in range(20)]
        assert delays == sorted(delays)

    def test_register_failure(self, policy):
        """A failure bumps attempts and records when and why."""
        op = SyncOperation(OperationType.DELETE, EntityType.TASK, "t1")

        failed = policy.register_failure(op, "timeout", now=ts(3))

        assert failed.attempts == 1
        assert failed.last_attempt == ts(3)
        assert failed.last_error == "timeout"
        assert op.attempts == 0

    def test_should_drop_at_cap(self, policy):
        op = SyncOperation(OperationType.DELETE, EntityType.TASK, "t1")
        for _ in range(4):
            op = policy.register_failure(op, "boom")
            assert not policy.should_drop(op)

        op = policy.register_failure(op, "boom")
        assert policy.should_drop(op)
        assert policy.remaining_attempts(op) == 0

    def test_custom_schedule(self):
        from offline_sync.retry import RetryPolicy

        policy = RetryPolicy(schedule=[0.5, 4], max_attempts=2)

        assert policy.schedule == (0.5, 4.0)
        assert policy.delay(3) == 4.0

    @pytest.mark.parametrize("schedule", [[], [5, 1]])
    def test_invalid_schedule(self, schedule):
        from offline_sync.retry import RetryPolicy

        with pytest.raises(ValueError):
            RetryPolicy(schedule=schedule)

    def test_invalid_max_attempts(self):
        from offline_sync.retry import RetryPolicy

        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
