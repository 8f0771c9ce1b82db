"""
Unit tests for DatabaseRetryPolicy.
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from perkboost.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from perkboost.core.exceptions import ConcurrencyConflictError, PersistenceError
from perkboost.modules.shared.exceptions import OwnershipError


def locked():
    return OperationalError("SELECT", {}, Exception("database is locked"))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def policy(sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return DatabaseRetryPolicy(
        DatabaseRetryConfig(max_attempts=3, initial_backoff_ms=10, max_backoff_ms=25, jitter_ms=0),
        sleep=fake_sleep,
    )


@pytest.mark.unit
class TestRetryPolicy:
    async def test_success_returns_result(self, policy, sleeps):
        async def operation():
            return "boost"

        assert await policy.execute(operation, operation_name="boost.activate") == "boost"
        assert sleeps == []

    async def test_transient_failure_is_retried(self, policy, sleeps):
        attempts = []

        async def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise locked()
            return "ok"

        assert await policy.execute(operation, operation_name="boost.activate") == "ok"
        assert len(attempts) == 3
        # 10ms, then 20ms (below the 25ms cap)
        assert sleeps == [0.01, 0.02]

    async def test_exhausted_contention_raises_conflict(self, policy, sleeps):
        async def operation():
            raise locked()

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await policy.execute(operation, operation_name="boost.resolve")

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert len(sleeps) == 2

    async def test_backoff_is_capped(self, sleeps):
        async def fake_sleep(seconds):
            sleeps.append(seconds)

        policy = DatabaseRetryPolicy(
            DatabaseRetryConfig(max_attempts=4, initial_backoff_ms=10, max_backoff_ms=25, jitter_ms=0),
            sleep=fake_sleep,
        )

        async def operation():
            raise locked()

        with pytest.raises(ConcurrencyConflictError):
            await policy.execute(operation, operation_name="boost.resolve")

        assert sleeps == [0.01, 0.02, 0.025]

    async def test_integrity_error_is_not_retried(self, policy, sleeps):
        calls = []

        async def operation():
            calls.append(1)
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(PersistenceError):
            await policy.execute(operation, operation_name="inventory.grant")

        assert calls == [1]
        assert sleeps == []

    async def test_domain_errors_pass_through_untouched(self, policy, sleeps):
        calls = []

        async def operation():
            calls.append(1)
            raise OwnershipError("p1", 3)

        with pytest.raises(OwnershipError):
            await policy.execute(operation, operation_name="boost.activate")

        assert calls == [1]
