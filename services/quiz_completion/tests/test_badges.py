import pytest
from sqlalchemy import func, select

from services.quiz_completion.badges import (
    BADGE_CATALOG,
    check_and_unlock_badges,
    check_perfect_score_badge,
    check_quiz_badges,
    evaluate_quiz_completion,
    get_badge_progress,
    get_user_badges,
    seed_badges,
    unlock_badge,
)
from services.quiz_completion.models import Badge, FlashcardReview, UserBadge, UserQuiz, UserQuizAttempt

from .conftest import add_user


async def add_attempts(db, user_id: str, quiz_type: str, n: int) -> None:
    async with db.session() as session:
        async with session.begin():
            for i in range(n):
                quiz = UserQuiz(slug=f"{quiz_type}-{user_id}-{i}", quiz_type=quiz_type)
                session.add(quiz)
                await session.flush()
                session.add(UserQuizAttempt(user_id=user_id, user_quiz_id=quiz.id, score=50))


async def unlocked_ids(db, user_id: str = "u1") -> set[str]:
    async with db.session() as session:
        return {ub.badge_id for ub, _ in await get_user_badges(session, user_id)}


@pytest.mark.asyncio
async def test_catalog_is_seeded_once(db) -> None:
    async with db.session() as session:
        async with session.begin():
            assert await seed_badges(session) == 0
        count = await session.scalar(select(func.count()).select_from(Badge))
    assert count == len(BADGE_CATALOG)


@pytest.mark.asyncio
async def test_unlock_is_idempotent(db) -> None:
    await add_user(db)
    async with db.session() as session:
        async with session.begin():
            first = await unlock_badge(session, "u1", "perfect-mcq", 1)
            second = await unlock_badge(session, "u1", "perfect-mcq", 1)
        rows = await session.scalar(select(func.count()).select_from(UserBadge))
    assert first is not None and first.badge_id == "perfect-mcq"
    assert second is None
    assert rows == 1


@pytest.mark.asyncio
async def test_activity_families(db) -> None:
    await add_user(db, longest_streak=8)
    async with db.session() as session:
        async with session.begin():
            for card in range(10):
                session.add(FlashcardReview(user_id="u1", flashcard_id=card, review_count=3 if card < 5 else 1))
    async with db.session() as session:
        async with session.begin():
            unlocked = await check_and_unlock_badges(session, "u1")
    assert {b.badge_id for b in unlocked} == {"streak-7", "reviews-10", "mastery-5"}


@pytest.mark.asyncio
async def test_activity_check_for_unknown_user_is_empty(db) -> None:
    async with db.session() as session:
        assert await check_and_unlock_badges(session, "ghost") == []


@pytest.mark.asyncio
async def test_quiz_count_families(db) -> None:
    await add_user(db)
    await add_attempts(db, "u1", "mcq", 10)
    await add_attempts(db, "u1", "code", 3)
    async with db.session() as session:
        async with session.begin():
            unlocked = await check_quiz_badges(session, "u1", "mcq")
            again = await check_quiz_badges(session, "u1", "mcq")
            code = await check_quiz_badges(session, "u1", "code")
    assert [b.badge_id for b in unlocked] == ["mcq-10"]
    assert again == []
    assert code == []


@pytest.mark.asyncio
async def test_perfect_score_badge(db) -> None:
    await add_user(db)
    async with db.session() as session:
        async with session.begin():
            assert await check_perfect_score_badge(session, "u1", "blanks", 99) is None
            assert await check_perfect_score_badge(session, "u1", "flashcard", 100) is None
            badge = await check_perfect_score_badge(session, "u1", "blanks", 100)
    assert badge.badge_id == "perfect-blanks"


@pytest.mark.asyncio
async def test_evaluate_quiz_completion_runs_every_family(db) -> None:
    await add_user(db, longest_streak=7)
    await add_attempts(db, "u1", "openended", 10)
    unlocked = await evaluate_quiz_completion(db, "u1", "openended", 100)
    assert {b.badge_id for b in unlocked} == {"streak-7", "openended-10", "perfect-openended"}
    assert await evaluate_quiz_completion(db, "u1", "openended", 100) == []
    assert await unlocked_ids(db) == {"streak-7", "openended-10", "perfect-openended"}


@pytest.mark.asyncio
async def test_badge_progress(db) -> None:
    await add_user(db, longest_streak=15)
    await add_attempts(db, "u1", "code", 5)
    await evaluate_quiz_completion(db, "u1", "code", 80)
    async with db.session() as session:
        progress = {p.badge_id: p for p in await get_badge_progress(session, "u1")}
    assert progress["streak-7"].unlocked
    assert progress["streak-30"].progress == 15
    assert progress["streak-30"].progress_percent == pytest.approx(50.0)
    assert progress["code-10"].progress == 5
    assert progress["mcq-10"].progress == 0
    assert progress["total-quiz-50"].progress == 5
    assert not progress["perfect-code"].unlocked
