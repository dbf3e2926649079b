"""Course-progress updater.

A quiz has no foreign key to the course tree: it is associated with a chapter
when a course quiz's question or answer text names the quiz slug or id (exact
match first, then substring). Found associations are cached. Completing an
associated quiz marks the chapter complete for the learner, recomputes the
course percentage over all of its chapters and records a `quiz_completed`
learning event.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from packages.common.cache import TTLCache
from packages.common.tracing import xapi_event

from .models import Chapter, CourseProgress, CourseQuiz, CourseUnit, LearningEvent, utcnow
from .repo import Database, insert
from .scorer import round_half_up

log = logging.getLogger(__name__)

EVENT_QUIZ_COMPLETED = "quiz_completed"


@dataclass(frozen=True)
class CourseLink:
    course_quiz_id: int
    chapter_id: int
    course_id: int


def _link_query():
    return (
        select(CourseQuiz.id, CourseQuiz.chapter_id, CourseUnit.course_id)
        .join(Chapter, Chapter.id == CourseQuiz.chapter_id)
        .join(CourseUnit, CourseUnit.id == Chapter.unit_id)
        .order_by(CourseQuiz.id)
        .limit(1)
    )


async def find_course_link(session: AsyncSession, slug: str, quiz_id: int) -> CourseLink | None:
    """Find the chapter a quiz belongs to by exact, then substring, text match."""
    needles = [slug, str(quiz_id)]
    exact = _link_query().where(or_(CourseQuiz.question.in_(needles), CourseQuiz.answer.in_(needles)))
    row = (await session.execute(exact)).first()
    if row is None:
        fuzzy = _link_query().where(
            or_(*(col.contains(n, autoescape=True) for n in needles for col in (CourseQuiz.question, CourseQuiz.answer)))
        )
        row = (await session.execute(fuzzy)).first()
    if row is None:
        return None
    return CourseLink(course_quiz_id=row[0], chapter_id=row[1], course_id=row[2])


def _chapter_ids(raw: Any) -> list[int]:
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            log.warning("Invalid completed_chapters JSON; starting over")
            return []
    return [int(c) for c in raw] if isinstance(raw, list) else []


class CourseProgressUpdater:
    """Applies a quiz completion to the learner's course progress in its own transaction."""

    def __init__(self, db: Database, cache: TTLCache, link_ttl: float = 1800.0, timeout: float = 8.0) -> None:
        self.db = db
        self.cache = cache
        self.link_ttl = link_ttl
        self.timeout = timeout

    async def resolve_link(self, slug: str, quiz_id: int) -> CourseLink | None:
        async def load() -> CourseLink | None:
            async with self.db.session() as session:
                return await find_course_link(session, slug, quiz_id)

        return await self.cache.get_or_load(f"course-link:{slug}", load, self.link_ttl)

    async def update(
        self, user_id: str, slug: str, quiz_id: int, percentage_score: int, time_spent: int
    ) -> CourseProgress | None:
        """Update progress for an associated course; None when the quiz is not part of one."""
        link = await self.resolve_link(slug, quiz_id)
        if link is None:
            log.debug("No course association", extra={"quiz_id": slug})
            return None
        return await asyncio.wait_for(
            self._apply(user_id, slug, link, percentage_score, time_spent), timeout=self.timeout
        )

    async def _apply(
        self, user_id: str, slug: str, link: CourseLink, percentage_score: int, time_spent: int
    ) -> CourseProgress:
        now = utcnow()
        async with self.db.session() as session:
            async with session.begin():
                # Create the row first so concurrent completions serialise on it.
                await session.execute(
                    insert(session, CourseProgress)
                    .values(
                        user_id=user_id,
                        course_id=link.course_id,
                        completed_chapters=[],
                        progress=0,
                        time_spent=0,
                        is_completed=False,
                        last_accessed_at=now,
                    )
                    .on_conflict_do_nothing(index_elements=["user_id", "course_id"])
                )
                row = (
                    await session.execute(
                        select(CourseProgress)
                        .where(CourseProgress.user_id == user_id, CourseProgress.course_id == link.course_id)
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    )
                ).scalar_one()

                completed = _chapter_ids(row.completed_chapters)
                if link.chapter_id not in completed:
                    completed.append(link.chapter_id)

                total_chapters = await session.scalar(
                    select(func.count(Chapter.id))
                    .join(CourseUnit, CourseUnit.id == Chapter.unit_id)
                    .where(CourseUnit.course_id == link.course_id)
                ) or 0
                progress = min(100, round_half_up(len(completed) / total_chapters * 100)) if total_chapters else 0

                row.current_chapter_id = link.chapter_id
                row.completed_chapters = completed
                row.progress = progress
                row.time_spent = (row.time_spent or 0) + time_spent
                row.is_completed = progress >= 100
                if row.is_completed and row.completion_date is None:
                    row.completion_date = now
                row.last_accessed_at = now

                session.add(LearningEvent(
                    user_id=user_id,
                    event_type=EVENT_QUIZ_COMPLETED,
                    entity_id=slug,
                    progress=percentage_score,
                    time_spent=time_spent,
                    meta={"courseId": link.course_id, "chapterId": link.chapter_id, "courseProgress": progress},
                    created_at=now,
                ))

        xapi_event(
            user_id, "completed", slug,
            course_id=link.course_id, chapter_id=link.chapter_id, score=percentage_score, course_progress=progress,
        )
        log.info(
            "Course progress updated",
            extra={"user_id": user_id, "course_id": link.course_id, "chapter_id": link.chapter_id, "progress": progress},
        )
        return row
