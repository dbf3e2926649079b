"""SQLAlchemy models for the Quiz Completion service.

Tables owned by the pipeline:
- UserQuizAttempt / UserQuizAttemptQuestion: one scored attempt per (user, quiz).
- UserBadge, UsageLimit, UserTopicProgress, CourseProgress, LearningEvent:
  side-effect state shared with other subsystems.

Read models (quizzes, questions, courses, flashcard reviews) are owned by the
content services; only `UserQuiz.best_score` and its timestamps are written here.

All datetimes are naive UTC.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, declarative_base, mapped_column, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """Learner account: streak state and aggregate quiz counters."""

    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0)
    last_review_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    total_quizzes_attempted: Mapped[int] = mapped_column(Integer, default=0)
    total_time_spent: Mapped[int] = mapped_column(Integer, default=0)
    subscription_tier: Mapped[str] = mapped_column(String(16), default="free")


class UserQuiz(Base):
    """Quiz definition addressed by slug.

    Attributes:
        id: Primary key.
        slug: Public identifier used in URLs (unique).
        quiz_type: One of mcq, code, openended, blanks, flashcard.
        best_score: Highest percentage score seen so far, or None before any attempt.
        time_ended: When the latest attempt finished.
        last_attempted: When the latest attempt was recorded.
    """

    __tablename__ = "user_quizzes"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(200), unique=True)
    title: Mapped[str] = mapped_column(String(200), default="")
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    quiz_type: Mapped[str] = mapped_column(String(16), default="mcq")
    best_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    time_ended: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_attempted: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    questions = relationship("UserQuizQuestion", back_populates="quiz", order_by="UserQuizQuestion.id")


class UserQuizQuestion(Base):
    """Question belonging to a UserQuiz; `answer`/`correct_answer` hold the expected answer."""

    __tablename__ = "user_quiz_questions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_quiz_id: Mapped[int] = mapped_column(ForeignKey("user_quizzes.id"))
    question: Mapped[str] = mapped_column(Text, default="")
    answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    correct_answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    model_answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    quiz = relationship("UserQuiz", back_populates="questions")


class UserQuizAttempt(Base):
    """At most one attempt per (user, quiz); retakes overwrite it."""

    __tablename__ = "user_quiz_attempts"
    __table_args__ = (UniqueConstraint("user_id", "user_quiz_id", name="uq_attempt_user_quiz"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"))
    user_quiz_id: Mapped[int] = mapped_column(ForeignKey("user_quizzes.id"))
    score: Mapped[int] = mapped_column(Integer, default=0)
    accuracy: Mapped[int] = mapped_column(Integer, default=0)
    time_spent: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class UserQuizAttemptQuestion(Base):
    """Per-question answer row of an attempt."""

    __tablename__ = "user_quiz_attempt_questions"
    __table_args__ = (UniqueConstraint("attempt_id", "question_id", name="uq_attempt_question"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    attempt_id: Mapped[int] = mapped_column(ForeignKey("user_quiz_attempts.id"))
    question_id: Mapped[int] = mapped_column(ForeignKey("user_quiz_questions.id"))
    user_answer: Mapped[str] = mapped_column(String(1000), default="")
    is_correct: Mapped[bool] = mapped_column(Boolean, default=False)
    time_spent: Mapped[int] = mapped_column(Integer, default=0)


class Badge(Base):
    """Static achievement catalog entry."""

    __tablename__ = "badges"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(32))
    icon: Mapped[str] = mapped_column(String(16), default="")
    required_value: Mapped[int] = mapped_column(Integer, default=1)
    tier: Mapped[str] = mapped_column(String(16), default="bronze")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class UserBadge(Base):
    """Unlock record; created at most once per (user, badge)."""

    __tablename__ = "user_badges"
    __table_args__ = (UniqueConstraint("user_id", "badge_id", name="uq_user_badge"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    badge_id: Mapped[str] = mapped_column(ForeignKey("badges.id"))
    unlocked_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    progress: Mapped[int] = mapped_column(Integer, default=0)


class UsageLimit(Base):
    """Per-user, per-resource quota window."""

    __tablename__ = "usage_limits"
    __table_args__ = (UniqueConstraint("user_id", "resource_type", name="uq_usage_user_resource"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    resource_type: Mapped[str] = mapped_column(String(32))
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    limit_count: Mapped[int] = mapped_column(Integer)
    period_start: Mapped[datetime] = mapped_column(DateTime)
    period_end: Mapped[datetime] = mapped_column(DateTime, index=True)
    reset_frequency: Mapped[str] = mapped_column(String(16), default="daily")


class FlashcardReview(Base):
    """Flashcard review counters, written by the flashcard subsystem."""

    __tablename__ = "flashcard_reviews"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    flashcard_id: Mapped[int] = mapped_column(Integer)
    review_count: Mapped[int] = mapped_column(Integer, default=1)
    reviewed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Course(Base):
    __tablename__ = "courses"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200))
    slug: Mapped[str] = mapped_column(String(200), unique=True)


class CourseUnit(Base):
    __tablename__ = "course_units"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id"))
    title: Mapped[str] = mapped_column(String(200))


class Chapter(Base):
    __tablename__ = "chapters"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    unit_id: Mapped[int] = mapped_column(ForeignKey("course_units.id"))
    title: Mapped[str] = mapped_column(String(200))


class CourseQuiz(Base):
    """Chapter quiz question; linked to a UserQuiz only by slug/id text in question or answer."""

    __tablename__ = "course_quizzes"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chapter_id: Mapped[int] = mapped_column(ForeignKey("chapters.id"))
    question: Mapped[str] = mapped_column(Text, default="")
    answer: Mapped[str] = mapped_column(Text, default="")


class CourseProgress(Base):
    """Per-user course completion bookkeeping."""

    __tablename__ = "course_progress"
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_course_progress"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id"))
    current_chapter_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_chapters: Mapped[list] = mapped_column(JSON, default=list)
    progress: Mapped[int] = mapped_column(Integer, default=0)
    time_spent: Mapped[int] = mapped_column(Integer, default=0)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completion_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_accessed_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class LearningEvent(Base):
    __tablename__ = "learning_events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    event_type: Mapped[str] = mapped_column(String(32))
    entity_id: Mapped[str] = mapped_column(String(64))
    progress: Mapped[int] = mapped_column(Integer, default=0)
    time_spent: Mapped[int] = mapped_column(Integer, default=0)
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class UserTopicProgress(Base):
    """Adaptive-difficulty state per (user, topic)."""

    __tablename__ = "user_topic_progress"
    __table_args__ = (UniqueConstraint("user_id", "topic", name="uq_topic_progress"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    topic: Mapped[str] = mapped_column(String(200))
    correct_answers: Mapped[int] = mapped_column(Integer, default=0)
    total_attempts: Mapped[int] = mapped_column(Integer, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0)
    average_time: Mapped[float] = mapped_column(Float, default=0.0)
    difficulty_level: Mapped[str] = mapped_column(String(8), default="MEDIUM")
    mastery_score: Mapped[float] = mapped_column(Float, default=0.0)
    last_attempt_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
