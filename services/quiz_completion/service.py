"""Request orchestration for a quiz completion.

validate -> cached quiz lookup -> score -> retry-wrapped record -> dispatch side
effects. Only the first four steps can fail the request.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from packages.common.cache import TTLCache
from packages.common.metrics import submissions
from packages.schemas.quiz import QUIZ_TYPES, AttemptView, QuizCompletionResult, QuizView

from .effects import CompletionEffects, CompletionEvent
from .errors import NotFoundError, ProcessingError, QuizPipelineError
from .models import utcnow
from .recorder import AttemptRecorder
from .repo import Database, QuizRecord, get_quiz_by_slug
from .scorer import calculate_accuracy, calculate_percentage_score, round_half_up
from .validation import prepare_submission

log = logging.getLogger(__name__)


def _naive_utc(moment: datetime | None) -> datetime:
    if moment is None:
        return utcnow()
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment


class QuizCompletionService:
    """Handles one submission end to end; shared by all requests of the process."""

    def __init__(
        self,
        db: Database,
        cache: TTLCache,
        recorder: AttemptRecorder,
        effects: CompletionEffects,
        quiz_ttl: float = 120.0,
    ) -> None:
        self.db = db
        self.cache = cache
        self.recorder = recorder
        self.effects = effects
        self.quiz_ttl = quiz_ttl

    async def get_quiz(self, slug: str) -> QuizRecord | None:
        """Quiz with questions by slug, served from the cache for `quiz_ttl` seconds."""
        async def load() -> QuizRecord | None:
            async with self.db.session() as session:
                return await get_quiz_by_slug(session, slug)

        return await self.cache.get_or_load(f"quiz:{slug}", load, self.quiz_ttl)

    async def submit(
        self,
        user_id: str,
        body: Any,
        quiz_type: str | None = None,
        slug: str | None = None,
    ) -> QuizCompletionResult:
        """Validate, score and record a submission, then fan out its side effects.

        Args:
            user_id: Authenticated user.
            body: Parsed JSON body.
            quiz_type: Quiz type from the route, used when the body has none.
            slug: Quiz slug from the route, used when the body has no quizId.

        Raises:
            QuizPipelineError: Validation, lookup or processing failure.
        """
        label = (quiz_type or "").lower()
        if label not in QUIZ_TYPES:
            label = "unknown"
        try:
            result = await self._submit(user_id, body, quiz_type, slug)
        except QuizPipelineError as e:
            submissions.labels(label, type(e).__name__).inc()
            raise
        submissions.labels(label, "ok").inc()
        return result

    async def _submit(
        self, user_id: str, body: Any, quiz_type: str | None, slug: str | None
    ) -> QuizCompletionResult:
        submission = prepare_submission(body, {"quizId": slug, "type": quiz_type})
        log.info(
            "Quiz submission received",
            extra={
                "user_id": user_id,
                "quiz_id": submission.quiz_id,
                "quiz_type": submission.type,
                "answers": len(submission.answers),
            },
        )

        quiz = await self.get_quiz(submission.quiz_id)
        if quiz is None:
            raise NotFoundError("Quiz not found")

        total_questions = len(quiz.questions) or submission.total_questions or 0
        percentage = calculate_percentage_score(submission.score, total_questions, submission.type)
        accuracy = calculate_accuracy(submission.answers, total_questions)
        completed_at = _naive_utc(submission.completed_at)

        try:
            recorded = await self.recorder.record(
                user_id, submission, quiz, percentage, accuracy, completed_at, total_questions
            )
        except QuizPipelineError:
            raise
        except Exception as e:
            log.exception("Error in quiz submission processing", extra={"user_id": user_id, "quiz_id": quiz.slug})
            raise ProcessingError(str(e) or "Error processing submission") from e

        total_time = round_half_up(submission.total_time)
        self.effects.dispatch_completion_effects(CompletionEvent(
            user_id=user_id,
            slug=quiz.slug,
            quiz_pk=quiz.id,
            quiz_type=submission.type,
            percentage_score=percentage,
            total_time=total_time,
            total_questions=total_questions,
            completed_at=completed_at,
            difficulty=submission.difficulty,
            hints_used=submission.hints_used,
        ))

        return QuizCompletionResult(
            updated_user_quiz=QuizView.model_validate(recorded.updated_quiz),
            quiz_attempt=AttemptView.model_validate(recorded.attempt),
            percentage_score=percentage,
            total_questions=recorded.total_questions,
            score=percentage,
            total_time=total_time,
        )
