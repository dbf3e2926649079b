"""Quiz-completion fan-out.

Which effects run after an attempt commits:

| effect          | runs for                             |
|-----------------|--------------------------------------|
| course_progress | every quiz type                      |
| streak          | every quiz type                      |
| + badges        | all but flashcard, after the streak  |
| usage           | all but flashcard                    |
| adaptive        | only when a difficulty hint was sent |

Badges share the streak effect so streak badges see the updated count.
Flashcards record badges and usage through their own review path.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from packages.common.tracing import xapi_event

from .adaptive import PerformanceMetrics, track_performance
from .badges import evaluate_quiz_completion
from .course_progress import CourseProgressUpdater
from .dispatcher import SideEffectDispatcher
from .repo import Database
from .streak import update_streak
from .usage_limits import increment, user_tier

log = logging.getLogger(__name__)

ADAPTIVE_CORRECT_THRESHOLD = 70
USAGE_RESOURCE = "quiz_attempts"


@dataclass
class CompletionEvent:
    user_id: str
    slug: str
    quiz_pk: int
    quiz_type: str
    percentage_score: int
    total_time: int
    total_questions: int
    completed_at: datetime
    difficulty: str | None = None
    hints_used: int = 0

    @property
    def context(self) -> dict:
        return {"user_id": self.user_id, "quiz_id": self.slug, "quiz_type": self.quiz_type}


class CompletionEffects:
    """Builds and dispatches the side effects of one completed quiz."""

    def __init__(
        self,
        db: Database,
        dispatcher: SideEffectDispatcher,
        course_progress: CourseProgressUpdater,
        streak_tz: str = "UTC",
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.course_progress = course_progress
        self.streak_tz = streak_tz

    def dispatch_completion_effects(self, event: CompletionEvent) -> dict[str, bool]:
        """Queue every applicable effect; returns effect name -> queued."""
        ctx = event.context
        queued = {
            "course_progress": self.dispatcher.dispatch(
                "course_progress", lambda: self.update_course_progress(event), ctx,
                timeout=self.course_progress.timeout + 1,
            ),
            "streak": self.dispatcher.dispatch("streak", lambda: self.streak_and_badges(event), ctx),
        }
        if event.quiz_type != "flashcard":
            queued["usage"] = self.dispatcher.dispatch("usage", lambda: self.increment_usage(event), ctx)
        if event.difficulty:
            queued["adaptive"] = self.dispatcher.dispatch("adaptive", lambda: self.track_adaptive(event), ctx)
        return queued

    async def update_course_progress(self, event: CompletionEvent) -> None:
        await self.course_progress.update(
            event.user_id, event.slug, event.quiz_pk, event.percentage_score, event.total_time
        )

    async def streak_and_badges(self, event: CompletionEvent) -> None:
        """Update the streak, then evaluate badges against it.

        A failed streak update does not skip the badge check; its error is
        re-raised afterwards so the dispatcher records the failure.
        """
        streak_error: Exception | None = None
        try:
            await self.update_streak(event)
        except Exception as e:
            streak_error = e
        if event.quiz_type != "flashcard":
            await self.evaluate_badges(event)
        if streak_error is not None:
            raise streak_error

    async def update_streak(self, event: CompletionEvent) -> None:
        async with self.db.session() as session:
            async with session.begin():
                result = await update_streak(session, event.user_id, event.completed_at, self.streak_tz)
        log.info(
            "Streak updated current=%d continued=%s", result.current_streak, result.streak_continued,
            extra=event.context,
        )
        if result.milestone:
            m = result.milestone
            xapi_event(event.user_id, "achieved", m.badge, streak=m.days, credits=m.credits)

    async def evaluate_badges(self, event: CompletionEvent) -> None:
        unlocked = await evaluate_quiz_completion(self.db, event.user_id, event.quiz_type, event.percentage_score)
        if unlocked:
            log.info("Badges unlocked: %s", [b.badge_id for b in unlocked], extra=event.context)

    async def increment_usage(self, event: CompletionEvent) -> None:
        async with self.db.session() as session:
            async with session.begin():
                tier = await user_tier(session, event.user_id)
                await increment(session, event.user_id, USAGE_RESOURCE, 1, tier)

    async def track_adaptive(self, event: CompletionEvent) -> None:
        metrics = PerformanceMetrics(
            topic=f"{event.quiz_type}_{event.slug}",
            is_correct=event.percentage_score >= ADAPTIVE_CORRECT_THRESHOLD,
            time_spent=event.total_time / max(1, event.total_questions),
            difficulty=event.difficulty or "MEDIUM",
            hints_used=event.hints_used,
        )
        async with self.db.session() as session:
            async with session.begin():
                await track_performance(session, event.user_id, metrics)
