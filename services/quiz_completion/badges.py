"""Badge evaluator.

`unlock_badge` is an insert-if-absent: the unique (user, badge) constraint makes
a second unlock (or a concurrent duplicate) a no-op that returns None.
Threshold families:
- streak (longest streak), reviews (flashcard reviews), mastery (cards reviewed 3+ times)
- quiz completion counts per type and in total
- perfect score per quiz type

Checks never raise: each logs its error and yields an empty result.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Awaitable, Callable, Sequence

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Badge, FlashcardReview, User, UserBadge, UserQuiz, UserQuizAttempt, utcnow
from .repo import Database, insert

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BadgeSpec:
    id: str
    name: str
    description: str
    category: str
    icon: str
    required_value: int
    tier: str


QUIZ_BADGE_TYPES = ("mcq", "blanks", "openended", "code")
_TYPE_LABELS = {"mcq": "Multiple Choice", "blanks": "Fill in the Blanks", "openended": "Open-Ended", "code": "Code"}

BADGE_CATALOG: tuple[BadgeSpec, ...] = (
    BadgeSpec("streak-7", "7-Day Streak", "Complete quizzes for 7 consecutive days", "streak", "🔥", 7, "bronze"),
    BadgeSpec("streak-30", "30-Day Streak", "Complete quizzes for 30 consecutive days", "streak", "🔥", 30, "silver"),
    BadgeSpec("streak-100", "100-Day Streak", "Complete quizzes for 100 consecutive days", "streak", "🔥", 100, "gold"),
    BadgeSpec("streak-365", "365-Day Streak", "Complete quizzes every day for a full year", "streak", "👑", 365, "platinum"),
    BadgeSpec("reviews-10", "First 10 Reviews", "Complete 10 flashcard reviews", "reviews", "📚", 10, "bronze"),
    BadgeSpec("reviews-50", "50 Reviews", "Complete 50 flashcard reviews", "reviews", "📚", 50, "silver"),
    BadgeSpec("reviews-100", "100 Reviews", "Complete 100 flashcard reviews", "reviews", "📖", 100, "gold"),
    BadgeSpec("reviews-500", "500 Reviews", "Complete 500 flashcard reviews", "reviews", "📘", 500, "platinum"),
    BadgeSpec("reviews-1000", "1000 Reviews", "Complete 1000 flashcard reviews", "reviews", "🎓", 1000, "diamond"),
    BadgeSpec("mastery-5", "First Masteries", "Master 5 flashcards", "mastery", "🧠", 5, "bronze"),
    BadgeSpec("mastery-25", "25 Masteries", "Master 25 flashcards", "mastery", "🧠", 25, "silver"),
    BadgeSpec("mastery-50", "50 Masteries", "Master 50 flashcards", "mastery", "🎯", 50, "gold"),
    BadgeSpec("mastery-100", "100 Masteries", "Master 100 flashcards", "mastery", "💎", 100, "platinum"),
    BadgeSpec("perfect-day", "Perfect Day", "Review all due cards in a single day", "special", "⭐", 1, "gold"),
    BadgeSpec("early-bird", "Early Bird", "Review flashcards before 8 AM", "special", "🌅", 1, "silver"),
    BadgeSpec("night-owl", "Night Owl", "Review flashcards after 10 PM", "special", "🦉", 1, "silver"),
    BadgeSpec("comeback", "Comeback", "Start a new streak after breaking one", "special", "💪", 1, "bronze"),
    *(
        BadgeSpec(f"{t}-{n}", f"{_TYPE_LABELS[t]} x{n}", f"Complete {n} {_TYPE_LABELS[t]} quizzes",
                  "quiz_completion", "📝", n, tier)
        for t in QUIZ_BADGE_TYPES
        for n, tier in ((10, "bronze"), (25, "silver"), (50, "gold"))
    ),
    *(
        BadgeSpec(f"total-quiz-{n}", f"{n} Quizzes", f"Complete {n} quizzes of any type",
                  "quiz_completion", "🏆", n, tier)
        for n, tier in ((50, "silver"), (100, "gold"), (250, "platinum"), (500, "diamond"))
    ),
    *(
        BadgeSpec(f"perfect-{t}", f"Perfect {_TYPE_LABELS[t]}", f"Score 100% on a {_TYPE_LABELS[t]} quiz",
                  "quiz_accuracy", "💯", 100, "gold")
        for t in QUIZ_BADGE_TYPES
    ),
)

STREAK_THRESHOLDS = (("streak-7", 7), ("streak-30", 30), ("streak-100", 100), ("streak-365", 365))
REVIEW_THRESHOLDS = (
    ("reviews-10", 10), ("reviews-50", 50), ("reviews-100", 100), ("reviews-500", 500), ("reviews-1000", 1000),
)
MASTERY_THRESHOLDS = (("mastery-5", 5), ("mastery-25", 25), ("mastery-50", 50), ("mastery-100", 100))
TYPE_THRESHOLDS = {t: tuple((f"{t}-{n}", n) for n in (10, 25, 50)) for t in QUIZ_BADGE_TYPES}
TOTAL_THRESHOLDS = (("total-quiz-50", 50), ("total-quiz-100", 100), ("total-quiz-250", 250), ("total-quiz-500", 500))

MASTERY_MIN_REVIEWS = 3


async def seed_badges(session: AsyncSession) -> int:
    """Insert catalog entries that are not present yet; returns how many were added."""
    rows = [asdict(spec) | {"created_at": utcnow()} for spec in BADGE_CATALOG]
    res = await session.execute(insert(session, Badge).values(rows).on_conflict_do_nothing())
    return max(res.rowcount or 0, 0)


async def unlock_badge(session: AsyncSession, user_id: str, badge_id: str, progress: int = 0) -> UserBadge | None:
    """Unlock `badge_id` for the user unless already unlocked.

    Returns:
        The new UserBadge, or None when the pair already existed.
    """
    stmt = (
        insert(session, UserBadge)
        .values(user_id=user_id, badge_id=badge_id, progress=progress, unlocked_at=utcnow())
        .on_conflict_do_nothing(index_elements=["user_id", "badge_id"])
        .returning(UserBadge.id)
    )
    new_id = (await session.execute(stmt)).scalar_one_or_none()
    if new_id is None:
        return None
    log.info("Unlocked badge %s", badge_id, extra={"user_id": user_id, "badge_id": badge_id})
    return await session.get(UserBadge, new_id)


async def _unlock_thresholds(
    session: AsyncSession, user_id: str, value: int, thresholds: Sequence[tuple[str, int]]
) -> list[UserBadge]:
    unlocked = []
    for badge_id, required in thresholds:
        if value >= required:
            badge = await unlock_badge(session, user_id, badge_id, value)
            if badge is not None:
                unlocked.append(badge)
    return unlocked


async def review_stats(session: AsyncSession, user_id: str) -> tuple[int, int]:
    """(total flashcard reviews, distinct cards reviewed at least three times)."""
    reviews = await session.scalar(
        select(func.count()).select_from(FlashcardReview).where(FlashcardReview.user_id == user_id)
    )
    mastered = await session.scalar(
        select(func.count(distinct(FlashcardReview.flashcard_id))).where(
            FlashcardReview.user_id == user_id, FlashcardReview.review_count >= MASTERY_MIN_REVIEWS
        )
    )
    return reviews or 0, mastered or 0


async def quiz_counts(session: AsyncSession, user_id: str, quiz_type: str | None = None) -> tuple[int, int]:
    """(attempts of any type, attempts of `quiz_type`)."""
    total = await session.scalar(
        select(func.count()).select_from(UserQuizAttempt).where(UserQuizAttempt.user_id == user_id)
    )
    by_type = 0
    if quiz_type:
        by_type = await session.scalar(
            select(func.count())
            .select_from(UserQuizAttempt)
            .join(UserQuiz, UserQuiz.id == UserQuizAttempt.user_quiz_id)
            .where(UserQuizAttempt.user_id == user_id, UserQuiz.quiz_type == quiz_type)
        ) or 0
    return total or 0, by_type


async def check_and_unlock_badges(session: AsyncSession, user_id: str) -> list[UserBadge]:
    """Streak, review and mastery families."""
    try:
        user = await session.get(User, user_id)
        if user is None:
            return []
        reviews, mastered = await review_stats(session, user_id)
        unlocked = await _unlock_thresholds(session, user_id, user.longest_streak or 0, STREAK_THRESHOLDS)
        unlocked += await _unlock_thresholds(session, user_id, reviews, REVIEW_THRESHOLDS)
        unlocked += await _unlock_thresholds(session, user_id, mastered, MASTERY_THRESHOLDS)
        return unlocked
    except Exception:
        log.exception("Badge check failed", extra={"user_id": user_id, "family": "activity"})
        return []


async def check_quiz_badges(session: AsyncSession, user_id: str, quiz_type: str | None = None) -> list[UserBadge]:
    """Per-type (10/25/50) and total (50/100/250/500) completion families."""
    try:
        total, by_type = await quiz_counts(session, user_id, quiz_type)
        unlocked = []
        if quiz_type in TYPE_THRESHOLDS:
            unlocked += await _unlock_thresholds(session, user_id, by_type, TYPE_THRESHOLDS[quiz_type])
        unlocked += await _unlock_thresholds(session, user_id, total, TOTAL_THRESHOLDS)
        return unlocked
    except Exception:
        log.exception("Badge check failed", extra={"user_id": user_id, "family": "quiz", "quiz_type": quiz_type})
        return []


async def check_perfect_score_badge(
    session: AsyncSession, user_id: str, quiz_type: str, score: int
) -> UserBadge | None:
    """Unlock `perfect-{type}` on a 100% score."""
    if score < 100 or quiz_type not in QUIZ_BADGE_TYPES:
        return None
    try:
        return await unlock_badge(session, user_id, f"perfect-{quiz_type}", 1)
    except Exception:
        log.exception("Badge check failed", extra={"user_id": user_id, "family": "perfect", "quiz_type": quiz_type})
        return None


async def _in_transaction(db: Database, family: str, user_id: str, fn: Callable[[AsyncSession], Awaitable]):
    try:
        async with db.session() as session:
            async with session.begin():
                return await fn(session)
    except Exception:
        log.exception("Badge transaction failed", extra={"user_id": user_id, "family": family})
        return None


async def evaluate_quiz_completion(db: Database, user_id: str, quiz_type: str, percentage_score: int) -> list[UserBadge]:
    """Run every family, each in its own transaction, and return the new unlocks."""
    unlocked: list[UserBadge] = []
    unlocked += await _in_transaction(db, "activity", user_id, lambda s: check_and_unlock_badges(s, user_id)) or []
    unlocked += await _in_transaction(db, "quiz", user_id, lambda s: check_quiz_badges(s, user_id, quiz_type)) or []
    perfect = await _in_transaction(
        db, "perfect", user_id, lambda s: check_perfect_score_badge(s, user_id, quiz_type, percentage_score)
    )
    if perfect is not None:
        unlocked.append(perfect)
    return unlocked


@dataclass
class BadgeProgress:
    badge_id: str
    name: str
    category: str
    tier: str
    required_value: int
    unlocked: bool
    progress: int
    progress_percent: float


async def get_user_badges(session: AsyncSession, user_id: str) -> list[tuple[UserBadge, Badge]]:
    """Unlocked badges with their catalog entry, newest first."""
    res = await session.execute(
        select(UserBadge, Badge)
        .join(Badge, Badge.id == UserBadge.badge_id)
        .where(UserBadge.user_id == user_id)
        .order_by(UserBadge.unlocked_at.desc())
    )
    return [(ub, b) for ub, b in res.all()]


async def get_badge_progress(session: AsyncSession, user_id: str) -> list[BadgeProgress]:
    """Progress toward every catalog badge."""
    badges = (await session.execute(select(Badge).order_by(Badge.category, Badge.required_value))).scalars().all()
    unlocked_ids = {ub.badge_id for ub, _ in await get_user_badges(session, user_id)}
    user = await session.get(User, user_id)
    longest = user.longest_streak if user is not None else 0
    reviews, mastered = await review_stats(session, user_id)
    total, _ = await quiz_counts(session, user_id)
    per_type = {t: (await quiz_counts(session, user_id, t))[1] for t in QUIZ_BADGE_TYPES}

    out = []
    for b in badges:
        if b.category == "streak":
            progress = longest
        elif b.category == "reviews":
            progress = reviews
        elif b.category == "mastery":
            progress = mastered
        elif b.category == "quiz_completion":
            prefix = b.id.rsplit("-", 1)[0]
            progress = per_type.get(prefix, total)
        else:
            progress = b.required_value if b.id in unlocked_ids else 0
        out.append(BadgeProgress(
            badge_id=b.id,
            name=b.name,
            category=b.category,
            tier=b.tier,
            required_value=b.required_value,
            unlocked=b.id in unlocked_ids,
            progress=progress,
            progress_percent=min(100.0, progress / b.required_value * 100) if b.required_value else 0.0,
        ))
    return out
