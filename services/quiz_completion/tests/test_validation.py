"""Tests for submission validation and normalization."""

import pytest

from packages.schemas.quiz import BlanksAnswer, McqAnswer
from services.quiz_completion.errors import UnsupportedTypeError, ValidationError
from services.quiz_completion.validation import (
    prepare_submission,
    validate_answers_format,
    validate_submission,
)


def body(**overrides):
    base = {
        "quizId": "quiz-1",
        "type": "mcq",
        "score": 2,
        "totalTime": 18,
        "answers": [
            {"questionId": "1", "answer": "A", "timeSpent": 10},
            {"questionId": 2, "answer": "B", "timeSpent": 8},
        ],
    }
    base.update(overrides)
    return base


def test_missing_fields_are_listed() -> None:
    with pytest.raises(ValidationError) as exc:
        validate_submission({"answers": []})
    assert exc.value.status_code == 400
    assert exc.value.details["missingFields"] == ["quizId", "totalTime", "score", "type"]


def test_booleans_are_not_numbers() -> None:
    with pytest.raises(ValidationError) as exc:
        validate_submission(body(score=True))
    assert exc.value.details["missingFields"] == ["score"]


def test_route_defaults_fill_quiz_id_and_type() -> None:
    data = validate_submission(body(quizId=None, type=None), {"quizId": "from-path", "type": "MCQ"})
    assert data["quizId"] == "from-path"
    assert data["type"] == "mcq"


def test_type_is_lowercased() -> None:
    assert validate_submission(body(type="  Blanks "))["type"] == "blanks"


def test_placeholders_when_answers_missing() -> None:
    data = validate_submission(body(answers=None, totalQuestions=3, totalTime=10))
    assert len(data["answers"]) == 3
    first = data["answers"][0]
    assert first["isCorrect"] is False
    assert first["timeSpent"] == 3
    assert first["answer"] == "" and first["userAnswer"] == ""


def test_placeholders_when_answers_empty() -> None:
    assert len(validate_submission(body(answers=[], totalQuestions=2))["answers"]) == 2


def test_missing_answers_without_total_fails() -> None:
    with pytest.raises(ValidationError):
        validate_submission(body(answers=None))
    with pytest.raises(ValidationError):
        validate_submission(body(answers=[]))


def test_non_list_answers_fail() -> None:
    with pytest.raises(ValidationError):
        validate_submission(body(answers={"questionId": 1}))


def test_negative_total_time_fails() -> None:
    with pytest.raises(ValidationError):
        validate_submission(body(totalTime=-1))


def test_non_object_body_fails() -> None:
    with pytest.raises(ValidationError):
        validate_submission([1, 2])
    with pytest.raises(ValidationError):
        validate_submission(None)


@pytest.mark.parametrize(
    "quiz_type,answers",
    [
        ("mcq", [{"userAnswer": "A", "timeSpent": 1}]),
        ("code", [{"answer": "print()", "timeSpent": 0}]),
        ("openended", [{"answer": "text", "timeSpent": 4}]),
        ("blanks", [{"userAnswer": ["a", "b"], "timeSpent": 4}]),
        ("flashcard", [{"timeSpent": 2}]),
    ],
)
def test_answer_format_accepts(quiz_type, answers) -> None:
    validate_answers_format(answers, quiz_type)


@pytest.mark.parametrize(
    "quiz_type,answers",
    [
        ("mcq", [{"answer": "A", "timeSpent": "1"}]),
        ("mcq", [{"timeSpent": 1}]),
        ("openended", [{"userAnswer": "text", "timeSpent": 4}]),
        ("blanks", [{"answer": "a", "timeSpent": 4}]),
        ("flashcard", [{"answer": "x"}]),
    ],
)
def test_answer_format_rejects(quiz_type, answers) -> None:
    with pytest.raises(ValidationError) as exc:
        validate_answers_format(answers, quiz_type)
    assert exc.value.details["invalidAnswers"] == [0]


def test_unknown_type_is_unsupported() -> None:
    with pytest.raises(UnsupportedTypeError) as exc:
        validate_answers_format([{"timeSpent": 1}], "essay")
    assert exc.value.status_code == 400


def test_prepare_builds_tagged_answers_with_string_ids() -> None:
    sub = prepare_submission(body())
    assert all(isinstance(a, McqAnswer) for a in sub.answers)
    assert [a.question_id for a in sub.answers] == ["1", "2"]
    assert sub.total_time == 18


def test_prepare_blanks_and_difficulty() -> None:
    sub = prepare_submission(body(
        type="blanks",
        difficulty="hard",
        answers=[{"questionId": 7, "userAnswer": ["x", "y"], "timeSpent": 3}],
    ))
    assert isinstance(sub.answers[0], BlanksAnswer)
    assert sub.answers[0].question_id == "7"
    assert sub.difficulty == "HARD"


def test_prepare_rejects_bad_completed_at() -> None:
    with pytest.raises(ValidationError):
        prepare_submission(body(completedAt="yesterday-ish"))
