import pytest
from sqlalchemy.exc import OperationalError

from packages.common.resilience import RetryConfig, retry_async
from services.quiz_completion.errors import NotFoundError, TransientDbError
from services.quiz_completion.recorder import is_transient


class PgError(Exception):
    def __init__(self, sqlstate: str) -> None:
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def test_linear_backoff() -> None:
    config = RetryConfig(attempts=3, base_delay=0.1)
    assert config.delay_for(1) == pytest.approx(0.1)
    assert config.delay_for(2) == pytest.approx(0.2)


@pytest.mark.asyncio
async def test_transient_errors_are_retried_until_success() -> None:
    calls = []
    retried = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientDbError("conflict")
        return "ok"

    result = await retry_async(
        flaky, RetryConfig(attempts=3, base_delay=0), is_transient,
        on_retry=lambda attempt, exc: retried.append(attempt),
    )
    assert result == "ok"
    assert len(calls) == 3
    assert retried == [1, 2]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts() -> None:
    calls = []

    async def always_fails():
        calls.append(1)
        raise TransientDbError("conflict")

    with pytest.raises(TransientDbError):
        await retry_async(always_fails, RetryConfig(attempts=3, base_delay=0), is_transient)
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_non_transient_errors_are_not_retried() -> None:
    calls = []

    async def missing():
        calls.append(1)
        raise NotFoundError("User not found")

    with pytest.raises(NotFoundError):
        await retry_async(missing, RetryConfig(attempts=3, base_delay=0), is_transient)
    assert len(calls) == 1


@pytest.mark.parametrize(
    "exc,expected",
    [
        (TransientDbError("x"), True),
        (OperationalError("UPDATE", {}, PgError("40001")), True),
        (OperationalError("UPDATE", {}, PgError("40P01")), True),
        (OperationalError("UPDATE", {}, Exception("database is locked")), True),
        (OperationalError("UPDATE", {}, PgError("23505")), False),
        (ValueError("nope"), False),
        (NotFoundError("User not found"), False),
    ],
)
def test_is_transient(exc, expected) -> None:
    assert is_transient(exc) is expected
