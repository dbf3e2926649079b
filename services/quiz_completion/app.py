"""Quiz Completion service FastAPI application.

`create_app` wires the process-wide components onto `app.state`:
- `db`: engine + session factory
- `cache`: TTL cache for quiz and course-association lookups
- `dispatcher`: side-effect worker pool
- `streak_sweeper`: periodic reset of expired streaks
- `service`: request orchestration

The lifespan creates the schema and seeds the badge catalog. It also starts
and stops the background tasks: both sweepers and the dispatcher workers.
"""

import logging
import traceback
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from packages.common.cache import TTLCache
from packages.common.config import Settings, get_settings
from packages.common.logging import configure_logging
from packages.common.resilience import RetryConfig
from packages.common.tracing import trace_middleware

from .badges import seed_badges
from .course_progress import CourseProgressUpdater
from .dispatcher import SideEffectDispatcher
from .effects import CompletionEffects
from .errors import ProcessingError, QuizPipelineError
from .recorder import AttemptRecorder
from .repo import Database
from .routes import router as quiz_router
from .service import QuizCompletionService
from .streak import StreakSweeper

log = logging.getLogger(__name__)


async def startup(app: FastAPI) -> None:
    """Initialize service dependencies at application startup."""
    await app.state.db.init_db()
    async with app.state.db.session() as session:
        async with session.begin():
            added = await seed_badges(session)
    log.info("Badge catalog seeded added=%d", added)
    app.state.cache.start()
    app.state.dispatcher.start()
    app.state.streak_sweeper.start()


async def shutdown(app: FastAPI) -> None:
    """Drain side effects, stop background tasks and close the pool."""
    s: Settings = app.state.settings
    await app.state.streak_sweeper.stop()
    await app.state.dispatcher.stop(drain_timeout=s.SIDE_EFFECT_DRAIN_TIMEOUT_S)
    await app.state.cache.stop()
    await app.state.db.dispose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup(app)
    try:
        yield
    finally:
        await shutdown(app)


def _error_response(status_code: int, payload: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=payload)


def _stack(exc: BaseException) -> str:
    cause = exc.__cause__ or exc
    return "".join(traceback.format_exception(type(cause), cause, cause.__traceback__))


GENERIC_ERROR = "Error processing submission"


def install_error_handlers(app: FastAPI) -> None:
    """Render every failure as `{"success": false, "error": ..., "details": ...}`.

    Outside development, 5xx responses carry only a generic message; the
    underlying error text (which may quote SQL and its parameters) goes to the log.
    """

    def server_error(message: str, exc: BaseException, details: object = None) -> JSONResponse:
        if not app.state.settings.is_development:
            return _error_response(
                status.HTTP_500_INTERNAL_SERVER_ERROR, {"success": False, "error": GENERIC_ERROR}
            )
        merged = dict(details) if isinstance(details, dict) else {}
        merged["stack"] = _stack(exc)
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, {"success": False, "error": message, "details": merged}
        )

    @app.exception_handler(QuizPipelineError)
    async def pipeline_error(request: Request, exc: QuizPipelineError) -> JSONResponse:
        if exc.status_code >= 500:
            log.error("Request failed: %s", exc.message, extra={"path": request.url.path})
            return server_error(exc.message, exc, exc.details)
        return _error_response(exc.status_code, exc.to_payload())

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, {"success": False, "error": str(exc.detail)})

    @app.exception_handler(RequestValidationError)
    async def request_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
        return _error_response(
            status.HTTP_400_BAD_REQUEST, {"success": False, "error": "Invalid request", "details": details}
        )

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        log.error("Unhandled exception: %s", exc, exc_info=True, extra={"path": request.url.path})
        return server_error(str(exc) or GENERIC_ERROR, exc)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI app and its process-wide components."""
    s = settings or get_settings()
    configure_logging(s.LOG_LEVEL, json_logs=s.LOG_JSON)

    db = Database(s.POSTGRES_DSN, pool_timeout=s.TX_MAX_WAIT_S)
    cache = TTLCache(name="quiz", maxsize=s.CACHE_MAX_ENTRIES, sweep_interval=s.CACHE_SWEEP_INTERVAL_S)
    dispatcher = SideEffectDispatcher(
        workers=s.SIDE_EFFECT_WORKERS,
        max_queue=s.SIDE_EFFECT_QUEUE_SIZE,
        default_timeout=s.SIDE_EFFECT_TIMEOUT_S,
    )
    recorder = AttemptRecorder(
        db,
        RetryConfig(attempts=s.TX_RETRY_ATTEMPTS, base_delay=s.TX_RETRY_BASE_DELAY_S),
        isolation_level=s.TX_ISOLATION_LEVEL,
        timeout=s.TX_TIMEOUT_S,
    )
    course_progress = CourseProgressUpdater(
        db, cache, link_ttl=s.COURSE_LINK_CACHE_TTL_S, timeout=s.COURSE_PROGRESS_TIMEOUT_S
    )
    effects = CompletionEffects(db, dispatcher, course_progress, streak_tz=s.STREAK_TIMEZONE)

    app = FastAPI(title="Quiz Completion Service", version="1.0.0", lifespan=lifespan)
    app.state.settings = s
    app.state.db = db
    app.state.cache = cache
    app.state.dispatcher = dispatcher
    app.state.streak_sweeper = StreakSweeper(db, interval=s.STREAK_SWEEP_INTERVAL_S, tz=s.STREAK_TIMEZONE)
    app.state.service = QuizCompletionService(db, cache, recorder, effects, quiz_ttl=s.QUIZ_CACHE_TTL_S)

    app.middleware("http")(trace_middleware)
    install_error_handlers(app)
    app.include_router(quiz_router)
    return app


if __name__ == "__main__":
    uvicorn.run("services.quiz_completion.app:create_app", factory=True, host="0.0.0.0", port=8000)
