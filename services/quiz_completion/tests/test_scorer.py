"""Tests for percentage/accuracy scoring and per-type correctness."""

import pytest

from packages.schemas.quiz import quiz_answer_adapter
from services.quiz_completion.repo import QuestionRecord
from services.quiz_completion.scorer import (
    calculate_accuracy,
    calculate_percentage_score,
    extract_user_answer,
    is_answer_correct,
    round_half_up,
)


def answer(kind: str, **fields):
    return quiz_answer_adapter.validate_python({"kind": kind, "timeSpent": 5, **fields})


def question(answer=None, correct_answer=None, model_answer=None) -> QuestionRecord:
    return QuestionRecord(id=1, answer=answer, correct_answer=correct_answer, model_answer=model_answer)


@pytest.mark.parametrize(
    "score,total,expected",
    [
        (3, 5, 60),
        (85, 5, 85),
        (0, 0, 0),
        (5, 5, 100),
        (1, 3, 33),
        (2, 3, 67),
        (150, 5, 100),
        (7, -1, 0),
    ],
)
def test_percentage_score(score, total, expected) -> None:
    assert calculate_percentage_score(score, total, "mcq") == expected


def test_percentage_rounds_half_up() -> None:
    # 1/8 = 12.5%
    assert calculate_percentage_score(1, 8, "mcq") == 13
    assert round_half_up(2.5) == 3


def test_accuracy_counts_only_true_flags() -> None:
    answers = [{"isCorrect": True}, {"isCorrect": "true"}, {"isCorrect": False}, {}]
    assert calculate_accuracy(answers, 4) == 25
    assert calculate_accuracy(answers, 0) == 0


def test_accuracy_accepts_typed_answers() -> None:
    answers = [answer("mcq", answer="A", isCorrect=True), answer("mcq", answer="B", isCorrect=True)]
    assert calculate_accuracy(answers, 2) == 100
    assert calculate_accuracy(answers, 1) == 100


def test_extract_prefers_answer_then_user_answer() -> None:
    assert extract_user_answer(answer("mcq", answer="A", userAnswer="B")) == "A"
    assert extract_user_answer(answer("mcq", userAnswer="B")) == "B"
    assert extract_user_answer(answer("blanks", userAnswer=["x", "y"])) == "x,y"
    assert extract_user_answer(answer("flashcard")) == ""


def test_client_flag_wins() -> None:
    assert is_answer_correct(answer("mcq", answer="wrong", isCorrect=True), question("A"), "mcq") is True
    assert is_answer_correct(answer("mcq", answer="A", isCorrect=False), question("A"), "mcq") is False


def test_exact_match_types() -> None:
    assert is_answer_correct(answer("mcq", answer="A"), question("A"), "mcq")
    assert not is_answer_correct(answer("code", answer="a"), question("A"), "code")
    assert is_answer_correct(answer("blanks", userAnswer="paris"), question(None, "paris"), "blanks")
    assert not is_answer_correct(answer("mcq", answer="A"), question(), "mcq")


def test_openended_is_lenient() -> None:
    q = question(model_answer="Photosynthesis converts light to energy")
    assert is_answer_correct(answer("openended", answer="photosynthesis"), q, "openended")
    assert is_answer_correct(
        answer("openended", answer="I think photosynthesis converts light to energy in plants"),
        question("Photosynthesis converts light to energy"),
        "openended",
    )
    assert not is_answer_correct(answer("openended", answer="respiration"), q, "openended")
    assert not is_answer_correct(answer("openended", answer="  "), q, "openended")


def test_flashcard_never_correct_without_flag() -> None:
    assert not is_answer_correct(answer("flashcard", answer="A"), question("A"), "flashcard")


def test_empty_stored_answer_falls_back_to_correct_answer() -> None:
    assert is_answer_correct(answer("mcq", answer="B"), question("", "B"), "mcq")
    assert not is_answer_correct(answer("mcq", answer=""), question("", ""), "mcq")
