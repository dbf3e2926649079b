"""Answer normalizer and validator.

Turns a raw JSON submission into a typed `QuizSubmission`:

1. `validate_submission` checks required fields (inferring `quizId`/`type`
   from the URL when the body omits them) and synthesizes placeholder
   answers when only `totalQuestions` is known.
2. `validate_answers_format` applies the per-type shape rules.
3. `normalize_submission` builds the tagged answer variants.
"""

import logging
import math
from typing import Any, Mapping

from pydantic import ValidationError as PydanticValidationError

from packages.schemas.quiz import QUIZ_TYPES, QuizSubmission, quiz_answer_adapter

from .errors import UnsupportedTypeError, ValidationError

log = logging.getLogger(__name__)


def is_number(value: Any) -> bool:
    """True for ints and finite floats; booleans are not numbers."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def _total_questions(body: Mapping[str, Any]) -> int | None:
    value = body.get("totalQuestions")
    if value is None:
        return None
    if not is_number(value) or value < 0 or int(value) != value:
        raise ValidationError("totalQuestions must be a non-negative integer", {"totalQuestions": value})
    return int(value)


def placeholder_answers(total_questions: int, total_time: float) -> list[dict[str, Any]]:
    """Empty, incorrect answers sharing the total time evenly."""
    avg = math.floor(total_time / total_questions) if total_questions > 0 else 0
    return [
        {"questionId": None, "answer": "", "userAnswer": "", "isCorrect": False, "timeSpent": avg}
        for _ in range(total_questions)
    ]


def validate_submission(body: Any, defaults: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Check required fields and return a normalized copy of the body.

    Args:
        body: Parsed JSON request body.
        defaults: Values inferred from the route (`quizId`, `type`) used when the
            body omits them.

    Returns:
        A new dict with `quizId`/`type` filled in, `type` lower-cased and
        `answers` guaranteed to be a non-empty list of objects.

    Raises:
        ValidationError: When a field is missing, has the wrong type, or answers
            cannot be derived.
    """
    if not isinstance(body, Mapping):
        raise ValidationError("Request body is empty" if not body else "Request body must be a JSON object")
    defaults = defaults or {}
    data = dict(body)

    for key in ("quizId", "type"):
        if not data.get(key) and defaults.get(key):
            data[key] = defaults[key]

    missing = []
    if not data.get("quizId"):
        missing.append("quizId")
    for key in ("totalTime", "score"):
        if not is_number(data.get(key)):
            missing.append(key)
    if not isinstance(data.get("type"), str) or not data["type"].strip():
        missing.append("type")
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", {"missingFields": missing})

    if data["totalTime"] < 0:
        raise ValidationError("totalTime must not be negative", {"totalTime": data["totalTime"]})

    data["quizId"] = str(data["quizId"])
    data["type"] = data["type"].strip().lower()
    total_questions = _total_questions(data)

    answers = data.get("answers")
    if answers is not None and not isinstance(answers, list):
        raise ValidationError("Answers must be an array", {"answers": type(answers).__name__})
    if not answers:
        if total_questions:
            log.warning(
                "Synthesizing placeholder answers",
                extra={"quiz_id": data["quizId"], "total_questions": total_questions},
            )
            data["answers"] = placeholder_answers(total_questions, data["totalTime"])
        elif answers is None:
            raise ValidationError("Answers array is missing and cannot be created", {"answers": None})
        else:
            raise ValidationError("Answers must be a non-empty array", {"answersLength": 0})

    bad = [i for i, a in enumerate(data["answers"]) if not isinstance(a, Mapping)]
    if bad:
        raise ValidationError("Every answer must be an object", {"invalidAnswers": bad})
    return data


def _has(answer: Mapping[str, Any], key: str) -> bool:
    return key in answer and answer[key] is not None


def validate_answers_format(answers: list[Mapping[str, Any]], quiz_type: str) -> None:
    """Apply the per-type shape rules to every answer.

    Raises:
        UnsupportedTypeError: `quiz_type` is not a supported quiz type.
        ValidationError: One or more answers miss a field their type requires.
    """
    if quiz_type not in QUIZ_TYPES:
        raise UnsupportedTypeError(quiz_type)
    if not answers:
        raise ValidationError("Answers must be a non-empty array", {"answersLength": 0})

    if quiz_type in ("mcq", "code"):
        invalid = [
            i for i, a in enumerate(answers)
            if not is_number(a.get("timeSpent")) or not ("answer" in a or "userAnswer" in a)
        ]
        reason = "Each answer needs timeSpent and answer fields"
    elif quiz_type == "openended":
        invalid = [i for i, a in enumerate(answers) if "answer" not in a or not _has(a, "timeSpent")]
        reason = "Each answer needs answer and timeSpent fields"
    elif quiz_type == "blanks":
        invalid = [i for i, a in enumerate(answers) if "userAnswer" not in a or not _has(a, "timeSpent")]
        reason = "Each answer needs userAnswer and timeSpent fields"
    else:
        invalid = [i for i, a in enumerate(answers) if not _has(a, "timeSpent")]
        reason = "Each answer needs a timeSpent field"

    if invalid:
        raise ValidationError(
            f"Answer format for {quiz_type} quiz is invalid",
            {"reason": reason, "invalidAnswers": invalid},
        )


def _errors(exc: PydanticValidationError) -> list[dict[str, Any]]:
    return [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]


def normalize_submission(data: Mapping[str, Any]) -> QuizSubmission:
    """Build the typed submission; each answer is tagged with the quiz type as `kind`."""
    quiz_type = data["type"]
    try:
        answers = [quiz_answer_adapter.validate_python({**a, "kind": quiz_type}) for a in data["answers"]]
        return QuizSubmission.model_validate({**data, "answers": answers})
    except PydanticValidationError as e:
        raise ValidationError("Invalid submission data", {"errors": _errors(e)}) from e


def prepare_submission(body: Any, defaults: Mapping[str, Any] | None = None) -> QuizSubmission:
    """Run the full validation pipeline on a raw request body."""
    data = validate_submission(body, defaults)
    validate_answers_format(data["answers"], data["type"])
    return normalize_submission(data)
