"""Attempt recorder: the transactional core of a quiz submission.

Steps:
1. `best_score`/timestamps on the quiz are updated in a standalone statement
   (its own short transaction) to keep the main transaction's lock set small.
2. One transaction (READ COMMITTED, bounded by a timeout) bumps the user's
   totals, upserts the (user, quiz) attempt and batch-inserts answer rows,
   skipping rows that already exist.

The whole call is retried on transient lock/serialization conflicts.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import case, select, update
from sqlalchemy.exc import DBAPIError

from packages.common.metrics import record_latency, tx_retries
from packages.common.resilience import RetryConfig, retry_async
from packages.schemas.quiz import QuizAnswer, QuizSubmission

from .errors import NotFoundError, ProcessingError, TransientDbError
from .models import User, UserQuiz, UserQuizAttempt, UserQuizAttemptQuestion, utcnow
from .repo import Database, QuestionRecord, QuizRecord, insert
from .scorer import extract_user_answer, is_answer_correct, round_half_up

log = logging.getLogger(__name__)

MAX_USER_ANSWER_LENGTH = 1000

# SQLSTATE serialization_failure and deadlock_detected
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01"})


def is_transient(exc: BaseException) -> bool:
    """Classify an error raised by the recorder as worth another attempt."""
    if isinstance(exc, TransientDbError):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if code in TRANSIENT_SQLSTATES:
            return True
        return "database is locked" in str(orig).lower()
    return False


def _retry_reason(exc: BaseException) -> str:
    if isinstance(exc, DBAPIError):
        code = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
        return code or "locked"
    return type(exc).__name__


@dataclass
class AttemptResult:
    updated_quiz: UserQuiz
    attempt: UserQuizAttempt
    percentage_score: int
    total_questions: int


def build_answer_rows(
    attempt_id: int,
    answers: Sequence[QuizAnswer],
    questions: Sequence[QuestionRecord],
    quiz_type: str,
) -> list[dict[str, Any]]:
    """Pair submitted answers with quiz questions by question id.

    Questions without a matching answer are skipped with a warning.
    """
    by_id: dict[str, QuizAnswer] = {}
    for a in answers:
        if a.question_id is not None:
            by_id.setdefault(a.question_id, a)

    if len(answers) != len(questions):
        log.warning(
            "Answer count mismatch answers=%d questions=%d", len(answers), len(questions),
            extra={"attempt_id": attempt_id},
        )

    rows = []
    for q in questions:
        a = by_id.get(str(q.id))
        if a is None:
            log.warning("No answer for question %s", q.id, extra={"attempt_id": attempt_id})
            continue
        rows.append({
            "attempt_id": attempt_id,
            "question_id": q.id,
            "user_answer": extract_user_answer(a)[:MAX_USER_ANSWER_LENGTH],
            "is_correct": is_answer_correct(a, q, quiz_type),
            "time_spent": max(0, int(a.time_spent)),
        })
    return rows


class AttemptRecorder:
    """Persists one scored submission; safe to call again for the same (user, quiz)."""

    def __init__(
        self,
        db: Database,
        retry: RetryConfig | None = None,
        isolation_level: str = "READ COMMITTED",
        timeout: float = 20.0,
    ) -> None:
        self.db = db
        self.retry = retry or RetryConfig()
        self.isolation_level = isolation_level
        self.timeout = timeout

    async def record(
        self,
        user_id: str,
        submission: QuizSubmission,
        quiz: QuizRecord,
        percentage_score: int,
        accuracy: int,
        completed_at: datetime,
        total_questions: int | None = None,
    ) -> AttemptResult:
        """Record the attempt, retrying transient conflicts.

        Returns:
            The committed quiz and attempt rows plus the scoring summary.
        """
        def on_retry(attempt: int, exc: BaseException) -> None:
            tx_retries.labels(_retry_reason(exc)).inc()

        with record_latency.time():
            result = await retry_async(
                lambda: self._record_once(user_id, submission, quiz, percentage_score, accuracy, completed_at),
                self.retry,
                is_transient,
                on_retry=on_retry,
                label=f"record_attempt:{quiz.slug}",
            )
        if total_questions is not None:
            result.total_questions = total_questions
        return result

    async def _record_once(
        self,
        user_id: str,
        submission: QuizSubmission,
        quiz: QuizRecord,
        percentage_score: int,
        accuracy: int,
        completed_at: datetime,
    ) -> AttemptResult:
        await self.update_best_score(quiz.slug, percentage_score, submission.type, completed_at)
        try:
            return await asyncio.wait_for(
                self._transaction(user_id, submission, quiz, percentage_score, accuracy),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise ProcessingError(
                "Transaction timed out", {"timeoutSeconds": self.timeout, "quizId": quiz.slug}
            ) from e

    async def update_best_score(
        self, slug: str, percentage_score: int, quiz_type: str, completed_at: datetime
    ) -> None:
        """Raise `best_score` to `percentage_score` if higher and stamp the attempt times."""
        best = case(
            (UserQuiz.best_score.is_(None), percentage_score),
            (UserQuiz.best_score < percentage_score, percentage_score),
            else_=UserQuiz.best_score,
        )
        async with self.db.session() as session:
            async with session.begin():
                await session.execute(
                    update(UserQuiz)
                    .where(UserQuiz.slug == slug)
                    .values(best_score=best, quiz_type=quiz_type, time_ended=completed_at, last_attempted=utcnow())
                )

    async def _transaction(
        self,
        user_id: str,
        submission: QuizSubmission,
        quiz: QuizRecord,
        percentage_score: int,
        accuracy: int,
    ) -> AttemptResult:
        time_spent = max(0, round_half_up(submission.total_time))
        async with self.db.session() as session:
            async with session.begin():
                if self.db.supports_isolation:
                    await session.connection(execution_options={"isolation_level": self.isolation_level})

                res = await session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(
                        total_quizzes_attempted=User.total_quizzes_attempted + 1,
                        total_time_spent=User.total_time_spent + time_spent,
                    )
                )
                if res.rowcount == 0:
                    raise NotFoundError("User not found", {"userId": user_id})

                quiz_row = (
                    await session.execute(select(UserQuiz).where(UserQuiz.slug == quiz.slug))
                ).scalar_one_or_none()
                if quiz_row is None:
                    raise NotFoundError("Quiz not found")

                now = utcnow()
                stmt = insert(session, UserQuizAttempt).values(
                    user_id=user_id,
                    user_quiz_id=quiz_row.id,
                    score=percentage_score,
                    accuracy=accuracy,
                    time_spent=time_spent,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["user_id", "user_quiz_id"],
                    set_={
                        "score": stmt.excluded.score,
                        "accuracy": stmt.excluded.accuracy,
                        "time_spent": stmt.excluded.time_spent,
                        "updated_at": now,
                    },
                ).returning(UserQuizAttempt.id)
                attempt_id = (await session.execute(stmt)).scalar_one()

                rows = build_answer_rows(attempt_id, submission.answers, quiz.questions, submission.type)
                if rows:
                    await session.execute(
                        insert(session, UserQuizAttemptQuestion)
                        .values(rows)
                        .on_conflict_do_nothing(index_elements=["attempt_id", "question_id"])
                    )

                attempt = await session.get(UserQuizAttempt, attempt_id, populate_existing=True)

        log.info(
            "Recorded attempt",
            extra={"user_id": user_id, "quiz_id": quiz.slug, "attempt_id": attempt_id, "answers": len(rows)},
        )
        return AttemptResult(
            updated_quiz=quiz_row,
            attempt=attempt,
            percentage_score=percentage_score,
            total_questions=len(quiz.questions),
        )
