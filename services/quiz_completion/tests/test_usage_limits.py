from datetime import datetime, timedelta

import pytest

from services.quiz_completion.models import UsageLimit
from services.quiz_completion.usage_limits import (
    UNLIMITED,
    can_use,
    get_usage_summary,
    increment,
    limit_for,
)

from .conftest import add_user

NOW = datetime(2024, 5, 1, 12, 0)


async def row_for(db, resource_type="quiz_attempts"):
    async with db.session() as session:
        rows = (await session.execute(
            UsageLimit.__table__.select().where(UsageLimit.resource_type == resource_type)
        )).all()
    return rows[0] if rows else None


def test_limits_by_tier() -> None:
    assert limit_for("quiz_attempts") == 10
    assert limit_for("flashcard_reviews", "pro") == 1000
    assert limit_for("course_access", "mystery") == 2
    assert limit_for("flashcard_decks", "unlimited") == UNLIMITED
    with pytest.raises(ValueError):
        limit_for("videos")


@pytest.mark.asyncio
async def test_row_is_created_lazily(db) -> None:
    async with db.session() as session:
        async with session.begin():
            check = await can_use(session, "u1", "quiz_attempts", "basic", now=NOW)
    assert check.allowed and check.used == 0
    assert check.limit == 50 and check.remaining == 50
    assert check.period_end == NOW + timedelta(days=1)

    row = await row_for(db)
    assert row.limit_count == 50 and row.reset_frequency == "daily"


@pytest.mark.asyncio
async def test_increment_adds_to_current_window(db) -> None:
    async with db.session() as session:
        async with session.begin():
            await increment(session, "u1", "quiz_attempts", now=NOW)
            row = await increment(session, "u1", "quiz_attempts", count=2, now=NOW + timedelta(hours=1))
            check = await can_use(session, "u1", "quiz_attempts", now=NOW + timedelta(hours=2))
    assert row.used_count == 3
    assert check.remaining == 7


@pytest.mark.asyncio
async def test_limit_reached(db) -> None:
    async with db.session() as session:
        async with session.begin():
            await increment(session, "u1", "flashcard_decks", count=3, now=NOW)
            check = await can_use(session, "u1", "flashcard_decks", now=NOW)
    assert not check.allowed
    assert check.remaining == 0


@pytest.mark.asyncio
async def test_expired_window_reports_available_without_writing(db) -> None:
    later = NOW + timedelta(days=2)
    async with db.session() as session:
        async with session.begin():
            await increment(session, "u1", "quiz_attempts", count=10, now=NOW)
            check = await can_use(session, "u1", "quiz_attempts", now=later)
    assert check.allowed and check.used == 0 and check.remaining == 10
    assert check.period_end == later + timedelta(days=1)

    row = await row_for(db)
    assert row.used_count == 10
    assert row.period_start == NOW


@pytest.mark.asyncio
async def test_increment_resets_expired_window(db) -> None:
    later = NOW + timedelta(days=31)
    async with db.session() as session:
        async with session.begin():
            await increment(session, "u1", "course_access", count=2, now=NOW)
            row = await increment(session, "u1", "course_access", now=later)
    assert row.used_count == 1
    assert row.period_start == later
    assert row.period_end == later + timedelta(days=30)


@pytest.mark.asyncio
async def test_summary_uses_user_tier(db) -> None:
    await add_user(db, subscription_tier="pro")
    async with db.session() as session:
        async with session.begin():
            summary = await get_usage_summary(session, "u1", now=NOW)
    assert set(summary) == {"quiz_attempts", "flashcard_reviews", "flashcard_decks", "course_access"}
    assert summary["quiz_attempts"].limit == 200
