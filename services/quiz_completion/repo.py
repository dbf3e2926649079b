"""Repository layer for the Quiz Completion service.

Provides the async engine/session factory, schema initialization, the
dialect-aware INSERT used for upserts, and the quiz read model used by the
request path.
"""

from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import selectinload

from .models import Base, UserQuiz


class Database:
    """Engine plus session factory for one DSN.

    `pool_timeout` is the connection-acquire wait; SQLite's async pool does
    not queue connections, so it is only applied to server databases.
    """

    def __init__(self, dsn: str, echo: bool = False, pool_timeout: float = 10.0) -> None:
        kwargs: dict[str, Any] = {"echo": echo}
        if not dsn.startswith("sqlite"):
            kwargs["pool_timeout"] = pool_timeout
            kwargs["pool_pre_ping"] = True
        self.dsn = dsn
        self.engine = create_async_engine(dsn, **kwargs)
        self.session = async_sessionmaker(self.engine, expire_on_commit=False)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @property
    def supports_isolation(self) -> bool:
        return self.dialect != "sqlite"

    async def init_db(self) -> None:
        """Create database schema if it doesn't exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


def insert(session: AsyncSession, table: Any) -> Any:
    """Return an INSERT construct supporting ON CONFLICT for the session's dialect."""
    if session.bind.dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)


@dataclass(frozen=True)
class QuestionRecord:
    id: int
    answer: str | None
    correct_answer: str | None
    model_answer: str | None


@dataclass(frozen=True)
class QuizRecord:
    """Detached, cacheable snapshot of a quiz and its questions."""
    id: int
    slug: str
    quiz_type: str
    best_score: int | None
    questions: tuple[QuestionRecord, ...]


async def get_quiz_by_slug(session: AsyncSession, slug: str) -> QuizRecord | None:
    """Fetch a quiz with its questions by slug.

    Returns:
        A QuizRecord if found; otherwise None.
    """
    res = await session.execute(
        select(UserQuiz).options(selectinload(UserQuiz.questions)).where(UserQuiz.slug == slug)
    )
    quiz = res.scalar_one_or_none()
    if quiz is None:
        return None
    return QuizRecord(
        id=quiz.id,
        slug=quiz.slug,
        quiz_type=quiz.quiz_type,
        best_score=quiz.best_score,
        questions=tuple(
            QuestionRecord(id=q.id, answer=q.answer, correct_answer=q.correct_answer, model_answer=q.model_answer)
            for q in quiz.questions
        ),
    )
