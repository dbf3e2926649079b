# services/quiz_completion/routes.py
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from fastapi.security import HTTPAuthorizationCredentials
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from packages.common.auth import security, verify_jwt
from packages.schemas.quiz import (
    QUIZ_TYPES,
    MilestoneView,
    QuizCompletionResponse,
    QuizStreakView,
    StreakResponse,
    StreakStatsView,
)

from .errors import AuthenticationError, UnsupportedTypeError, ValidationError
from .service import QuizCompletionService
from .streak import StreakMilestone, calculate_quiz_streak, get_streak_stats, next_milestone, streak_milestone

router = APIRouter()


def get_service(request: Request) -> QuizCompletionService:
    return request.app.state.service


def current_user_id(creds: HTTPAuthorizationCredentials | None = Depends(security)) -> str:
    """Opaque id (`sub`) of the bearer token's user; 401 with `requiresAuth` otherwise."""
    if creds is None:
        raise AuthenticationError("User not authenticated")
    try:
        return verify_jwt(creds.credentials).sub
    except HTTPException as e:
        raise AuthenticationError(str(e.detail)) from e


@router.post(
    "/quizzes/{quiz_type}/{slug}/submit",
    response_model=QuizCompletionResponse,
    tags=["quizzes"],
)
async def submit_quiz(
    quiz_type: str,
    slug: str,
    request: Request,
    user_id: str = Depends(current_user_id),
    service: QuizCompletionService = Depends(get_service),
) -> QuizCompletionResponse:
    """Record a finished quiz attempt for the current user."""
    try:
        body = await request.json()
    except ValueError as e:
        raise ValidationError("Invalid JSON in request body", str(e)) from e
    result = await service.submit(user_id, body, quiz_type, slug)
    return QuizCompletionResponse(result=result)


def _milestone(m: StreakMilestone | None) -> MilestoneView | None:
    return MilestoneView.model_validate(m) if m else None


@router.get("/users/me/streak", response_model=StreakResponse, tags=["streaks"])
async def my_streak(
    request: Request,
    quiz_type: str | None = Query(default=None, alias="quizType"),
    user_id: str = Depends(current_user_id),
) -> StreakResponse:
    """Current streak, the streak over finished quizzes and the milestones around it."""
    if quiz_type is not None and quiz_type not in QUIZ_TYPES:
        raise UnsupportedTypeError(quiz_type)
    tz = request.app.state.settings.STREAK_TIMEZONE
    async with request.app.state.db.session() as session:
        stats = await get_streak_stats(session, user_id, tz=tz)
        quiz_streak = await calculate_quiz_streak(session, user_id, quiz_type, tz=tz)
    return StreakResponse(
        stats=StreakStatsView.model_validate(stats),
        quiz_streak=QuizStreakView.model_validate(quiz_streak),
        milestone=_milestone(streak_milestone(stats.current_streak)),
        next_milestone=_milestone(next_milestone(stats.current_streak)),
    )


@router.get("/healthz", tags=["infra"])
def healthz(request: Request) -> dict:
    return {"status": "ok", "cache": request.app.state.cache.stats()}


@router.get("/metrics", tags=["infra"])
def metrics() -> PlainTextResponse:
    data = generate_latest()
    return PlainTextResponse(data.decode("utf-8"), media_type=CONTENT_TYPE_LATEST)
