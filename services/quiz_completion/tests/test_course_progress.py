import asyncio

import pytest
from sqlalchemy import select

from packages.common.cache import TTLCache
from services.quiz_completion.course_progress import CourseProgressUpdater, find_course_link
from services.quiz_completion.models import Chapter, Course, CourseProgress, CourseQuiz, CourseUnit, LearningEvent

from .conftest import add_quiz


@pytest.fixture
async def course(db):
    """One course, one unit, two chapters; each chapter quiz names a quiz slug."""
    async with db.session() as session:
        async with session.begin():
            c = Course(title="Python", slug="python")
            session.add(c)
            await session.flush()
            unit = CourseUnit(course_id=c.id, title="Basics")
            session.add(unit)
            await session.flush()
            ch1 = Chapter(unit_id=unit.id, title="Variables")
            ch2 = Chapter(unit_id=unit.id, title="Loops")
            session.add_all([ch1, ch2])
            await session.flush()
            session.add_all([
                CourseQuiz(chapter_id=ch1.id, question="quiz-1", answer=""),
                CourseQuiz(chapter_id=ch2.id, question="Practice: see intro-loops for review", answer=""),
            ])
    await add_quiz(db, "quiz-1")
    await add_quiz(db, "intro-loops")
    await add_quiz(db, "lonely")
    return {"course_id": c.id, "chapters": (ch1.id, ch2.id)}


@pytest.fixture
def updater(db) -> CourseProgressUpdater:
    return CourseProgressUpdater(db, TTLCache(name="test"), link_ttl=60, timeout=5)


@pytest.mark.asyncio
async def test_exact_then_substring_link(db, course) -> None:
    async with db.session() as session:
        exact = await find_course_link(session, "quiz-1", 1)
        fuzzy = await find_course_link(session, "intro-loops", 2)
        missing = await find_course_link(session, "lonely", 3)
    assert exact.chapter_id == course["chapters"][0]
    assert fuzzy.chapter_id == course["chapters"][1]
    assert exact.course_id == fuzzy.course_id == course["course_id"]
    assert missing is None


@pytest.mark.asyncio
async def test_completion_updates_progress_and_logs_event(db, course, updater) -> None:
    row = await updater.update("u1", "quiz-1", 1, 90, 30)
    assert row.progress == 50
    assert row.completed_chapters == [course["chapters"][0]]
    assert row.is_completed is False and row.completion_date is None
    assert row.time_spent == 30

    async with db.session() as session:
        events = (await session.execute(select(LearningEvent))).scalars().all()
    assert len(events) == 1
    assert events[0].event_type == "quiz_completed"
    assert events[0].entity_id == "quiz-1"
    assert events[0].meta["courseProgress"] == 50


@pytest.mark.asyncio
async def test_all_chapters_complete_the_course(db, course, updater) -> None:
    await updater.update("u1", "quiz-1", 1, 90, 30)
    await updater.update("u1", "quiz-1", 1, 95, 10)
    row = await updater.update("u1", "intro-loops", 2, 80, 20)
    assert row.progress == 100
    assert row.is_completed is True
    assert row.completion_date is not None
    assert sorted(row.completed_chapters) == sorted(course["chapters"])
    assert row.time_spent == 60

    async with db.session() as session:
        rows = (await session.execute(select(CourseProgress))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_unassociated_quiz_is_a_no_op(db, course, updater) -> None:
    assert await updater.update("u1", "lonely", 3, 100, 5) is None
    assert updater.cache.get("course-link:lonely") is None
    async with db.session() as session:
        assert (await session.execute(select(CourseProgress))).first() is None


@pytest.mark.asyncio
async def test_found_link_is_cached(course, updater) -> None:
    link = await updater.resolve_link("quiz-1", 1)
    assert updater.cache.get("course-link:quiz-1") == link


@pytest.mark.asyncio
async def test_concurrent_chapter_completions_are_both_kept(db, course, updater) -> None:
    await asyncio.gather(
        updater.update("u1", "quiz-1", 1, 90, 10),
        updater.update("u1", "intro-loops", 2, 90, 15),
    )
    async with db.session() as session:
        row = (await session.execute(select(CourseProgress))).scalar_one()
    assert sorted(row.completed_chapters) == sorted(course["chapters"])
    assert row.progress == 100
    assert row.time_spent == 25
