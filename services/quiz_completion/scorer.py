"""Scoring rules: percentage score, accuracy and per-type answer correctness."""

import math
from typing import Any, Iterable, Optional

from packages.schemas.quiz import QuizAnswer

from .repo import QuestionRecord


def round_half_up(x: float) -> int:
    """Round to the nearest integer, halves away from zero for positives (2.5 -> 3)."""
    return math.floor(x + 0.5)


def _clamp(x: float, lo: int = 0, hi: int = 100) -> int:
    return int(min(hi, max(lo, x)))


def calculate_percentage_score(score: float, total_questions: int, quiz_type: str) -> int:
    """Normalize a caller-supplied score to a 0-100 percentage.

    A score no larger than `total_questions` is read as a correct-answer
    count; anything larger is taken to be a percentage already.
    """
    if total_questions <= 0:
        return 0
    if score <= total_questions:
        return _clamp(round_half_up(score / total_questions * 100))
    return _clamp(round_half_up(score))


def calculate_accuracy(answers: Iterable[Any], total_questions: int) -> int:
    """Share of answers flagged `isCorrect is True`, as a 0-100 integer."""
    if total_questions <= 0:
        return 0
    correct = 0
    for a in answers:
        flag = a.get("isCorrect") if isinstance(a, dict) else getattr(a, "is_correct", None)
        if flag is True:
            correct += 1
    return _clamp(round_half_up(correct / total_questions * 100))


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(_as_text(v) for v in value)
    return value if isinstance(value, str) else str(value)


def extract_user_answer(answer: QuizAnswer) -> str:
    """User answer text: `answer` first, then `userAnswer`; lists are comma-joined."""
    value = getattr(answer, "answer", None)
    if value is None:
        value = getattr(answer, "user_answer", None)
    return _as_text(value)


def _expected(question: QuestionRecord) -> Optional[str]:
    return question.answer or question.correct_answer


def is_answer_correct(answer: QuizAnswer, question: QuestionRecord, quiz_type: str) -> bool:
    """Decide correctness of one answer.

    A boolean `isCorrect` from the client wins. Otherwise mcq/code/blanks need
    an exact match and open-ended answers a case-insensitive containment match
    in either direction against any reference answer.
    """
    if isinstance(answer.is_correct, bool):
        return answer.is_correct

    user_answer = extract_user_answer(answer)
    if quiz_type in ("mcq", "code", "blanks"):
        expected = _expected(question)
        return bool(expected) and user_answer == expected
    if quiz_type == "openended":
        given = user_answer.strip().lower()
        if not given:
            return False
        for ref in (question.answer, question.correct_answer, question.model_answer):
            ref = (ref or "").strip().lower()
            if ref and (ref in given or given in ref):
                return True
        return False
    return False
