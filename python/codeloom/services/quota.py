"""Per-user daily request quota.

- Daily limit for non-privileged users: 20 requests (DAILY_REQUEST_LIMIT)
- The counter belongs to a calendar day (UTC); a stored date other than today
  means the stored count is stale and is treated as 0 before anything else
- Privileged tiers are never blocked; their count is still tracked for display
- A rejection consumes nothing: the caller blocks dispatch and shows the
  upgrade prompt carried by QuotaExceededError

The governor is pure: it returns the next state and the caller persists it.
"""

from dataclasses import dataclass, replace
from datetime import UTC, date, datetime

from codeloom.errors import QuotaExceededError
from codeloom.logging import get_logger
from codeloom.services.redact import safe_kv
from codeloom.services.types import Tier

logger = get_logger(__name__)

DEFAULT_DAILY_LIMIT = 20


def quota_day(now: datetime) -> str:
    """ISO calendar day (UTC for aware datetimes) used as the counter key."""
    if now.tzinfo is not None:
        now = now.astimezone(UTC)
    return now.date().isoformat()


@dataclass(frozen=True)
class QuotaState:
    """Daily usage stored on the user record.

    Attributes:
        count: Requests made on last_request_date
        last_request_date: ISO day of the last counted request, None if never
        tier: User privilege level
    """

    count: int = 0
    last_request_date: str | None = None
    tier: Tier = Tier.FREE

    @property
    def tier_exempt(self) -> bool:
        return self.tier.is_privileged

    def count_on(self, today: str) -> int:
        """Effective count for today (stale days count as 0)."""
        if self.last_request_date != today:
            return 0
        return self.count


class QuotaGovernor:
    """Enforces the daily request limit."""

    def __init__(self, daily_limit: int = DEFAULT_DAILY_LIMIT):
        if daily_limit < 1:
            raise ValueError("daily_limit must be >= 1")
        self._daily_limit = daily_limit

    @property
    def daily_limit(self) -> int:
        return self._daily_limit

    def check_and_consume(self, state: QuotaState, now: datetime) -> QuotaState:
        """Admit one request or reject it.

        Args:
            state: The user's stored quota state.
            now: Current time.

        Returns:
            The state to persist: count + 1 for today.

        Raises:
            QuotaExceededError: Non-exempt user already at the daily limit.
        """
        today = quota_day(now)
        count = state.count_on(today)

        if not state.tier_exempt and count >= self._daily_limit:
            logger.warning(
                "quota.blocked",
                **safe_kv(limit=self._daily_limit, count=count, tier=state.tier.value),
            )
            raise QuotaExceededError(self._daily_limit)

        return replace(state, count=count + 1, last_request_date=today)

    def remaining(self, state: QuotaState, now: datetime | date) -> int | None:
        """Requests left today, or None for exempt users."""
        if state.tier_exempt:
            return None
        if isinstance(now, datetime):
            today = quota_day(now)
        else:
            today = now.isoformat()
        return max(0, self._daily_limit - state.count_on(today))
