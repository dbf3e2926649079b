"""Daily-engagement streak shared by every quiz type and flashcards.

State lives on the user row (`streak`, `longest_streak`, `last_review_date`).
Calendar days are evaluated in a configurable timezone; stored datetimes are
naive UTC.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import NotFoundError
from .models import User, UserQuiz, UserQuizAttempt, utcnow
from .repo import Database

log = logging.getLogger(__name__)


@dataclass
class StreakStats:
    current_streak: int
    longest_streak: int
    last_activity: datetime | None
    is_active_today: bool
    needs_quiz_today: bool
    days_until_break: int


@dataclass(frozen=True)
class StreakMilestone:
    days: int
    credits: int
    badge: str
    title: str


MILESTONES = {
    m.days: m
    for m in (
        StreakMilestone(3, 10, "bronze-streak", "3-Day Warrior"),
        StreakMilestone(7, 25, "silver-streak", "Week Warrior"),
        StreakMilestone(14, 50, "gold-streak", "Two-Week Champion"),
        StreakMilestone(30, 100, "diamond-streak", "Monthly Master"),
        StreakMilestone(50, 200, "platinum-streak", "Unstoppable"),
        StreakMilestone(100, 500, "legend-streak", "Legendary Learner"),
        StreakMilestone(365, 2000, "year-streak", "Year-Long Legend"),
    )
}


@dataclass
class StreakResult:
    streak_continued: bool
    current_streak: int
    longest_streak: int
    is_new_record: bool
    milestone: StreakMilestone | None = None


@dataclass
class QuizStreak:
    """Streak derived from attempt history rather than the user row."""
    current_streak: int
    longest_streak: int
    total_attempts: int
    last_attempt: datetime | None


def local_day(moment: datetime, tz: str | ZoneInfo = "UTC") -> date:
    """Calendar day of `moment` (naive values are UTC) in timezone `tz`."""
    zone = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(zone).date()


async def update_streak(
    session: AsyncSession,
    user_id: str,
    completed_at: datetime | None = None,
    tz: str = "UTC",
) -> StreakResult:
    """Apply one completion to the user's streak.

    Same day as the last activity: no write. The day after: streak + 1.
    Anything else: streak restarts at 1. The user row is locked for the
    duration of the caller's transaction.

    Raises:
        NotFoundError: The user does not exist.
    """
    completed_at = completed_at or utcnow()
    res = await session.execute(select(User).where(User.id == user_id).with_for_update())
    user = res.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found", {"userId": user_id})

    today = local_day(completed_at, tz)
    previous_longest = user.longest_streak or 0
    new_streak = 1
    continued = False

    if user.last_review_date is not None:
        last_day = local_day(user.last_review_date, tz)
        if last_day == today:
            log.info("Streak unchanged; already active today", extra={"user_id": user_id})
            return StreakResult(
                streak_continued=False,
                current_streak=user.streak,
                longest_streak=previous_longest,
                is_new_record=False,
            )
        if last_day == today - timedelta(days=1):
            new_streak = (user.streak or 0) + 1
            continued = True
        else:
            log.info("Streak broken %s -> 1", user.streak, extra={"user_id": user_id})

    longest = max(previous_longest, new_streak)
    is_new_record = new_streak == longest and new_streak > previous_longest

    user.streak = new_streak
    user.longest_streak = longest
    if completed_at.tzinfo is not None:
        completed_at = completed_at.astimezone(timezone.utc).replace(tzinfo=None)
    user.last_review_date = completed_at
    await session.flush()

    if is_new_record:
        log.info("New streak record %d", new_streak, extra={"user_id": user_id})
    milestone = streak_milestone(new_streak)
    if milestone is not None:
        log.info("Streak milestone %s reached", milestone.badge, extra={"user_id": user_id, "streak": new_streak})
    return StreakResult(
        streak_continued=continued,
        current_streak=new_streak,
        longest_streak=longest,
        is_new_record=is_new_record,
        milestone=milestone,
    )


async def get_streak_stats(
    session: AsyncSession,
    user_id: str,
    now: datetime | None = None,
    tz: str = "UTC",
) -> StreakStats:
    """Read-only view of the streak; an unknown user reports an empty streak."""
    user = await session.get(User, user_id)
    if user is None:
        return StreakStats(0, 0, None, False, False, 0)

    today = local_day(now or utcnow(), tz)
    is_active_today = False
    needs_quiz_today = False
    days_until_break = 0

    if user.last_review_date is not None:
        last_day = local_day(user.last_review_date, tz)
        is_active_today = last_day == today
        if is_active_today:
            days_until_break = 1
        elif user.streak > 0:
            needs_quiz_today = last_day == today - timedelta(days=1)
            days_until_break = max(0, 1 - (today - last_day).days)

    return StreakStats(
        current_streak=user.streak,
        longest_streak=user.longest_streak,
        last_activity=user.last_review_date,
        is_active_today=is_active_today,
        needs_quiz_today=needs_quiz_today,
        days_until_break=days_until_break,
    )


def streak_milestone(streak: int) -> StreakMilestone | None:
    """Milestone reached at exactly `streak` days, if any."""
    return MILESTONES.get(streak)


def next_milestone(streak: int) -> StreakMilestone | None:
    return next((MILESTONES[d] for d in sorted(MILESTONES) if d > streak), None)


EXPIRED_AFTER_DAYS = 2
DEFAULT_SWEEP_INTERVAL_S = 3600.0


async def break_expired_streaks(session: AsyncSession, now: datetime | None = None, tz: str = "UTC") -> int:
    """Zero the streak of users idle since before local midnight two days ago.

    Returns:
        Number of streaks broken.
    """
    zone = ZoneInfo(tz)
    cutoff_day = local_day(now or utcnow(), zone) - timedelta(days=EXPIRED_AFTER_DAYS)
    cutoff = (
        datetime.combine(cutoff_day, datetime.min.time(), tzinfo=zone)
        .astimezone(timezone.utc)
        .replace(tzinfo=None)
    )
    res = await session.execute(
        update(User)
        .where(User.streak > 0, or_(User.last_review_date.is_(None), User.last_review_date < cutoff))
        .values(streak=0)
        .execution_options(synchronize_session=False)
    )
    broken = max(res.rowcount or 0, 0)
    if broken:
        log.info("Broke %d expired streaks", broken, extra={"cutoff": cutoff.isoformat()})
    return broken


def _day_runs(days: list[date]) -> tuple[int, int]:
    """(run ending at the newest day, longest run) over distinct days sorted newest first."""
    if not days:
        return 0, 0
    current = longest = run = 1
    in_current = True
    for newer, older in zip(days, days[1:]):
        if (newer - older).days == 1:
            run += 1
            if in_current:
                current = run
        else:
            in_current = False
            run = 1
        longest = max(longest, run)
    return current, longest


async def calculate_quiz_streak(
    session: AsyncSession, user_id: str, quiz_type: str | None = None, tz: str = "UTC"
) -> QuizStreak:
    """Streak over the days the user finished quizzes (of `quiz_type`, when given).

    Each (user, quiz) attempt row counts on the day it was last recorded.
    """
    stmt = select(UserQuizAttempt.updated_at).where(UserQuizAttempt.user_id == user_id)
    if quiz_type:
        stmt = stmt.join(UserQuiz, UserQuiz.id == UserQuizAttempt.user_quiz_id).where(UserQuiz.quiz_type == quiz_type)
    stamps = [s for s in (await session.execute(stmt)).scalars() if s is not None]
    if not stamps:
        return QuizStreak(0, 0, 0, None)
    days = sorted({local_day(s, tz) for s in stamps}, reverse=True)
    current, longest = _day_runs(days)
    return QuizStreak(current, longest, len(stamps), max(stamps))


class StreakSweeper:
    """Periodically breaks expired streaks so idle users stop showing stale values."""

    def __init__(self, db: Database, interval: float = DEFAULT_SWEEP_INTERVAL_S, tz: str = "UTC") -> None:
        self.db = db
        self.interval = interval
        self.tz = tz
        self._task: asyncio.Task | None = None

    async def sweep(self) -> int:
        async with self.db.session() as session:
            async with session.begin():
                return await break_expired_streaks(session, tz=self.tz)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop(), name="streak-sweep")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                log.exception("Streak sweep failed")
