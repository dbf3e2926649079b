"""Quiz completion schemas: answer variants, submissions and response envelopes."""

from datetime import datetime
from typing import Annotated, Any, List, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

QuizType = Literal["mcq", "code", "openended", "blanks", "flashcard"]
QUIZ_TYPES: tuple[str, ...] = get_args(QuizType)

Difficulty = Literal["EASY", "MEDIUM", "HARD"]


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def canonical_question_id(value: Any) -> Optional[str]:
    """Return the canonical string form of a question id (ints and integral floats as digits)."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


class _AnswerBase(CamelModel):
    """Fields shared by every answer variant."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    question_id: Optional[str] = None
    time_spent: int = Field(default=0, ge=0)
    is_correct: Optional[bool] = None

    @field_validator("question_id", mode="before")
    @classmethod
    def _canonical_id(cls, v: Any) -> Optional[str]:
        return canonical_question_id(v)

    @field_validator("time_spent", mode="before")
    @classmethod
    def _coerce_time(cls, v: Any) -> int:
        try:
            return max(0, int(float(v)))
        except (TypeError, ValueError):
            return 0

    @field_validator("is_correct", mode="before")
    @classmethod
    def _strict_flag(cls, v: Any) -> Optional[bool]:
        # Only a real boolean counts as a client verdict.
        return v if isinstance(v, bool) else None


class McqAnswer(_AnswerBase):
    """Multiple-choice answer; `answer` is the chosen option."""
    kind: Literal["mcq"] = "mcq"
    answer: Any = None
    user_answer: Any = None


class CodeAnswer(_AnswerBase):
    """Code quiz answer; `answer` holds the submitted snippet or option."""
    kind: Literal["code"] = "code"
    answer: Any = None
    user_answer: Any = None


class BlanksAnswer(_AnswerBase):
    """Fill-in-the-blanks answer; `userAnswer` may be a list of blanks."""
    kind: Literal["blanks"] = "blanks"
    user_answer: Union[str, List[str], None] = None
    answer: Any = None


class OpenEndedAnswer(_AnswerBase):
    """Free-text answer."""
    kind: Literal["openended"] = "openended"
    answer: Any = None


class FlashcardAnswer(_AnswerBase):
    """Flashcard review; only time spent is required."""
    kind: Literal["flashcard"] = "flashcard"
    answer: Any = None


QuizAnswer = Annotated[
    Union[McqAnswer, CodeAnswer, BlanksAnswer, OpenEndedAnswer, FlashcardAnswer],
    Field(discriminator="kind"),
]

quiz_answer_adapter: TypeAdapter = TypeAdapter(QuizAnswer)


class QuizSubmission(CamelModel):
    """A validated, normalized quiz completion request."""
    quiz_id: str
    answers: List[QuizAnswer]
    total_time: float
    score: float
    type: QuizType
    total_questions: Optional[int] = None
    completed_at: Optional[datetime] = None
    difficulty: Optional[Difficulty] = None
    hints_used: int = Field(default=0, ge=0)

    @field_validator("difficulty", mode="before")
    @classmethod
    def _upper_difficulty(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v


class QuizView(CamelModel):
    """Quiz row as returned to the caller."""
    id: int
    slug: str
    quiz_type: str
    best_score: Optional[int] = None
    last_attempted: Optional[datetime] = None
    time_ended: Optional[datetime] = None


class AttemptView(CamelModel):
    """Attempt row as returned to the caller."""
    id: int
    user_id: str
    user_quiz_id: int
    score: int
    accuracy: int
    time_spent: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class QuizCompletionResult(CamelModel):
    """Payload of a successful submission."""
    updated_user_quiz: QuizView
    quiz_attempt: AttemptView
    percentage_score: int
    total_questions: int
    score: int
    total_time: int


class QuizCompletionResponse(CamelModel):
    """Success envelope."""
    success: bool = True
    result: QuizCompletionResult


class ErrorResponse(CamelModel):
    """Failure envelope."""
    success: bool = False
    error: str
    details: Any = None


class StreakStatsView(CamelModel):
    current_streak: int
    longest_streak: int
    last_activity: Optional[datetime] = None
    is_active_today: bool
    needs_quiz_today: bool
    days_until_break: int


class QuizStreakView(CamelModel):
    current_streak: int
    longest_streak: int
    total_attempts: int
    last_attempt: Optional[datetime] = None


class MilestoneView(CamelModel):
    days: int
    credits: int
    badge: str
    title: str


class StreakResponse(CamelModel):
    """Streak overview: user-row streak, attempt-history streak and milestones."""
    success: bool = True
    stats: StreakStatsView
    quiz_streak: QuizStreakView
    milestone: Optional[MilestoneView] = None
    next_milestone: Optional[MilestoneView] = None
