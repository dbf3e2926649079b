"""Adaptive-performance tracker.

Keeps per-(user, topic) counters and derives a 0-100 mastery score and the
next recommended difficulty. The target success rate is 70-85%: above 90%
the difficulty goes up, below 50% it goes down immediately, and between 50%
and 70% it goes down only after five attempts.
"""

import logging
import math
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import UserTopicProgress, utcnow
from .repo import insert

log = logging.getLogger(__name__)

DIFFICULTIES = ("EASY", "MEDIUM", "HARD")
_DIFFICULTY_WEIGHT = {"EASY": 0.5, "MEDIUM": 1.0, "HARD": 1.5}

IDEAL_SECONDS = 45
MIN_ATTEMPTS_FOR_RECOMMENDATION = 3
SUSTAINED_STRUGGLE_ATTEMPTS = 5


@dataclass
class PerformanceMetrics:
    topic: str
    is_correct: bool
    time_spent: float
    difficulty: str = "MEDIUM"
    hints_used: int = 0


@dataclass
class TopicProgress:
    topic: str
    correct_answers: int
    total_attempts: int
    current_streak: int
    longest_streak: int
    average_time: float
    difficulty_level: str
    mastery_score: float
    success_rate: float


def calculate_mastery_score(
    correct_answers: int,
    total_attempts: int,
    current_streak: int,
    average_time: float,
    difficulty_level: str,
) -> float:
    """Weighted score: success rate 50, streak 20, time efficiency 15, difficulty 15."""
    if total_attempts <= 0:
        return 0.0
    success = correct_answers / total_attempts * 50
    streak = min(current_streak / 10, 1) * 20
    efficiency = max(0.0, 1 - abs(average_time - IDEAL_SECONDS) / 100) if average_time > 0 else 0.0
    timing = efficiency * 15
    difficulty = min(_DIFFICULTY_WEIGHT.get(difficulty_level, 1.0) * 10, 15)
    total = success + streak + timing + difficulty
    return min(math.floor(total * 100 + 0.5) / 100, 100.0)


def _step(current: str, delta: int) -> str:
    idx = DIFFICULTIES.index(current) if current in DIFFICULTIES else 1
    return DIFFICULTIES[min(len(DIFFICULTIES) - 1, max(0, idx + delta))]


def recommend_difficulty(correct_answers: int, total_attempts: int, current: str) -> str:
    """Next difficulty for the topic; unchanged until there are three attempts."""
    if total_attempts < MIN_ATTEMPTS_FOR_RECOMMENDATION:
        return current
    rate = correct_answers / total_attempts
    if rate >= 0.90:
        return _step(current, +1)
    if rate >= 0.70:
        return current
    if rate >= 0.50:
        return _step(current, -1) if total_attempts >= SUSTAINED_STRUGGLE_ATTEMPTS else current
    return _step(current, -1)


async def track_performance(session: AsyncSession, user_id: str, metrics: PerformanceMetrics) -> TopicProgress:
    """Fold one result into the user's topic progress and upsert it."""
    existing = (
        await session.execute(
            select(UserTopicProgress).where(
                UserTopicProgress.user_id == user_id, UserTopicProgress.topic == metrics.topic
            ).execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()

    prev_total = existing.total_attempts if existing else 0
    correct = (existing.correct_answers if existing else 0) + (1 if metrics.is_correct else 0)
    total = prev_total + 1
    streak = (existing.current_streak if existing else 0) + 1 if metrics.is_correct else 0
    longest = max(streak, existing.longest_streak if existing else 0)
    prev_avg = existing.average_time if existing else 0.0
    average_time = (prev_avg * prev_total + metrics.time_spent) / total if prev_total else float(metrics.time_spent)
    level = existing.difficulty_level if existing else (metrics.difficulty or "MEDIUM")

    mastery = calculate_mastery_score(correct, total, streak, average_time, level)
    recommended = recommend_difficulty(correct, total, level)

    values = {
        "correct_answers": correct,
        "total_attempts": total,
        "current_streak": streak,
        "longest_streak": longest,
        "average_time": average_time,
        "difficulty_level": recommended,
        "mastery_score": mastery,
        "last_attempt_at": utcnow(),
    }
    stmt = insert(session, UserTopicProgress).values(user_id=user_id, topic=metrics.topic, **values)
    await session.execute(stmt.on_conflict_do_update(index_elements=["user_id", "topic"], set_=values))

    log.info(
        "Topic progress updated",
        extra={"user_id": user_id, "topic": metrics.topic, "mastery": mastery, "difficulty": recommended},
    )
    return TopicProgress(
        topic=metrics.topic,
        correct_answers=correct,
        total_attempts=total,
        current_streak=streak,
        longest_streak=longest,
        average_time=average_time,
        difficulty_level=recommended,
        mastery_score=mastery,
        success_rate=correct / total,
    )
