"""Shared fixtures: a temporary SQLite database, seeded rows and an HTTP client."""

import os
import time
from contextlib import asynccontextmanager

os.environ.setdefault("ENV", "test")
os.environ.setdefault("POSTGRES_DSN", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_PUBLIC_KEY", "quiz-completion-test-secret-0123456789abcdef")
os.environ.setdefault("JWT_ALGORITHM", "HS256")

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

from packages.common.config import Settings, get_settings
from services.quiz_completion.app import create_app, shutdown, startup
from services.quiz_completion.badges import seed_badges
from services.quiz_completion.models import User, UserQuiz, UserQuizQuestion
from services.quiz_completion.repo import Database


def make_token(sub: str = "u1", **claims) -> str:
    s = get_settings()
    payload = {"sub": sub, "exp": int(time.time()) + 3600, **claims}
    return jwt.encode(payload, s.JWT_PUBLIC_KEY, algorithm=s.JWT_ALGORITHM)


async def add_user(db: Database, user_id: str = "u1", **fields) -> None:
    async with db.session() as session:
        async with session.begin():
            session.add(User(id=user_id, **fields))


async def add_quiz(
    db: Database,
    slug: str = "quiz-1",
    quiz_type: str = "mcq",
    answers: tuple = ("A", "B"),
    **fields,
) -> UserQuiz:
    async with db.session() as session:
        async with session.begin():
            quiz = UserQuiz(slug=slug, title=slug, quiz_type=quiz_type, **fields)
            quiz.questions = [UserQuizQuestion(question=f"Q{i}", answer=a) for i, a in enumerate(answers, 1)]
            session.add(quiz)
    return quiz


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'quiz.db'}"


@pytest.fixture
async def db(db_url):
    database = Database(db_url)
    await database.init_db()
    async with database.session() as session:
        async with session.begin():
            await seed_badges(session)
    yield database
    await database.dispose()


@pytest.fixture
def settings(db_url) -> Settings:
    return Settings(
        ENV="test",
        POSTGRES_DSN=db_url,
        JWT_PUBLIC_KEY=get_settings().JWT_PUBLIC_KEY,
        JWT_ALGORITHM=get_settings().JWT_ALGORITHM,
        SIDE_EFFECT_WORKERS=1,
        TX_RETRY_BASE_DELAY_S=0.0,
    )


@asynccontextmanager
async def running_app(settings: Settings, **overrides):
    """Started app plus a client for it, built from `settings` with `overrides` applied."""
    application = create_app(settings.model_copy(update=overrides) if overrides else settings)
    await startup(application)
    try:
        async with AsyncClient(transport=ASGITransport(app=application), base_url="http://test") as ac:
            yield application, ac
    finally:
        await shutdown(application)


@pytest.fixture
async def app(settings):
    application = create_app(settings)
    await startup(application)
    yield application
    await shutdown(application)


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {make_token('u1')}"}
