"""Usage-limit accountant: per-user, per-resource quotas with period rollover.

Rows are created lazily on first use and sized from the user's tier. Daily
resources roll over every 24 hours, the others use a 30-day window; a new
window starts at the moment the expired one is reset, not on calendar
boundaries. `increment` does not enforce the limit; callers check `can_use`
first.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import UsageLimit, User, utcnow
from .repo import insert

log = logging.getLogger(__name__)

DAILY = "daily"
MONTHLY = "monthly"

RESOURCE_PERIODS = {
    "quiz_attempts": DAILY,
    "flashcard_reviews": DAILY,
    "flashcard_decks": MONTHLY,
    "course_access": MONTHLY,
}
PERIOD_LENGTHS = {DAILY: timedelta(days=1), MONTHLY: timedelta(days=30)}

UNLIMITED = 1_000_000

TIER_LIMITS = {
    "free": {"quiz_attempts": 10, "flashcard_reviews": 50, "flashcard_decks": 3, "course_access": 2},
    "basic": {"quiz_attempts": 50, "flashcard_reviews": 200, "flashcard_decks": 10, "course_access": 10},
    "pro": {"quiz_attempts": 200, "flashcard_reviews": 1000, "flashcard_decks": 50, "course_access": 50},
    "unlimited": {r: UNLIMITED for r in RESOURCE_PERIODS},
}


@dataclass
class UsageCheck:
    resource_type: str
    allowed: bool
    used: int
    limit: int
    remaining: int
    period_end: datetime


def limit_for(resource_type: str, tier: str = "free") -> int:
    """Quota for `resource_type` on `tier`; unknown tiers get the free table."""
    if resource_type not in RESOURCE_PERIODS:
        raise ValueError(f"Unknown resource type: {resource_type}")
    return TIER_LIMITS.get(tier, TIER_LIMITS["free"])[resource_type]


def period_window(resource_type: str, start: datetime) -> tuple[datetime, datetime]:
    frequency = RESOURCE_PERIODS[resource_type]
    return start, start + PERIOD_LENGTHS[frequency]


async def user_tier(session: AsyncSession, user_id: str) -> str:
    tier = await session.scalar(select(User.subscription_tier).where(User.id == user_id))
    return tier or "free"


async def _get_or_create(
    session: AsyncSession, user_id: str, resource_type: str, tier: str, now: datetime
) -> UsageLimit:
    stmt = select(UsageLimit).where(UsageLimit.user_id == user_id, UsageLimit.resource_type == resource_type)
    row = (await session.execute(stmt)).scalar_one_or_none()
    if row is not None:
        return row
    start, end = period_window(resource_type, now)
    await session.execute(
        insert(session, UsageLimit)
        .values(
            user_id=user_id,
            resource_type=resource_type,
            used_count=0,
            limit_count=limit_for(resource_type, tier),
            period_start=start,
            period_end=end,
            reset_frequency=RESOURCE_PERIODS[resource_type],
        )
        .on_conflict_do_nothing(index_elements=["user_id", "resource_type"])
    )
    return (await session.execute(stmt)).scalar_one()


async def can_use(
    session: AsyncSession,
    user_id: str,
    resource_type: str,
    tier: str = "free",
    now: datetime | None = None,
) -> UsageCheck:
    """Report whether one more unit of `resource_type` is allowed.

    An expired window is reported as fully available; the row itself is only
    reset by the next mutating call.
    """
    now = now or utcnow()
    row = await _get_or_create(session, user_id, resource_type, tier, now)
    if now > row.period_end:
        limit = limit_for(resource_type, tier)
        _, end = period_window(resource_type, now)
        return UsageCheck(resource_type, limit > 0, 0, limit, limit, end)
    remaining = max(0, row.limit_count - row.used_count)
    return UsageCheck(resource_type, row.used_count < row.limit_count, row.used_count, row.limit_count, remaining, row.period_end)


async def reset_expired(
    session: AsyncSession,
    user_id: str,
    resource_type: str,
    tier: str = "free",
    now: datetime | None = None,
    used: int = 0,
) -> bool:
    """Start a new window with `used_count=used` if the current one has ended.

    Returns:
        True if the row was reset.
    """
    now = now or utcnow()
    start, end = period_window(resource_type, now)
    res = await session.execute(
        update(UsageLimit)
        .where(
            UsageLimit.user_id == user_id,
            UsageLimit.resource_type == resource_type,
            UsageLimit.period_end < now,
        )
        .values(used_count=used, period_start=start, period_end=end, limit_count=limit_for(resource_type, tier))
        .execution_options(synchronize_session=False)
    )
    if res.rowcount:
        log.info("Usage window reset", extra={"user_id": user_id, "resource_type": resource_type})
    return bool(res.rowcount)


async def increment(
    session: AsyncSession,
    user_id: str,
    resource_type: str,
    count: int = 1,
    tier: str = "free",
    now: datetime | None = None,
) -> UsageLimit:
    """Add `count` to the current window, resetting an expired window first."""
    now = now or utcnow()
    row = await _get_or_create(session, user_id, resource_type, tier, now)
    if not await reset_expired(session, user_id, resource_type, tier, now, used=count):
        await session.execute(
            update(UsageLimit)
            .where(UsageLimit.id == row.id)
            .values(used_count=UsageLimit.used_count + count)
            .execution_options(synchronize_session=False)
        )
    await session.refresh(row)
    return row


async def get_usage_summary(
    session: AsyncSession, user_id: str, tier: str | None = None, now: datetime | None = None
) -> dict[str, UsageCheck]:
    """`can_use` for every resource type."""
    tier = tier or await user_tier(session, user_id)
    return {r: await can_use(session, user_id, r, tier, now) for r in RESOURCE_PERIODS}
