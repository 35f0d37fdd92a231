"""Per-user entitlement: Pro subscription status and the free daily quota."""
import logging
from datetime import datetime, timezone
from typing import Optional

from study_helper.config import settings
from study_helper.db.queries import count_usage_today, get_subscription, log_usage
from study_helper.exceptions import UsageLimitExceeded

logger = logging.getLogger(__name__)

PRO_STATUSES = {"active", "simulated_pro"}


def _is_subscription_active(subscription: Optional[dict], now: Optional[datetime] = None) -> bool:
    """Active status and, when a period end is set, not past it."""
    if not subscription or subscription.get("status") not in PRO_STATUSES:
        return False

    period_end = subscription.get("current_period_end")
    if not period_end:
        return True
    try:
        end = datetime.fromisoformat(period_end)
    except (ValueError, TypeError):
        logger.warning("Invalid current_period_end: %s", period_end)
        return False
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return end > (now or datetime.now(timezone.utc))


class EntitlementContext:
    """Snapshot of what a user may do, passed explicitly to handlers.

    Values are loaded once; call :meth:`refresh` after anything that can
    change them (a generation, a payment).
    """

    def __init__(self, user_id: int, daily_quota: Optional[int] = None):
        self.user_id = user_id
        self.daily_quota = settings.FREE_DAILY_QUOTA if daily_quota is None else daily_quota
        self.subscription: Optional[dict] = None
        self.usage_today = 0

    @classmethod
    async def load(cls, user_id: int, daily_quota: Optional[int] = None) -> "EntitlementContext":
        context = cls(user_id, daily_quota)
        await context.refresh()
        return context

    async def refresh(self) -> None:
        self.subscription = await get_subscription(self.user_id)
        self.usage_today = await count_usage_today(self.user_id)

    @property
    def is_pro(self) -> bool:
        return _is_subscription_active(self.subscription)

    @property
    def remaining(self) -> Optional[int]:
        """Generations left today; None means unlimited."""
        if self.is_pro:
            return None
        return max(0, self.daily_quota - self.usage_today)

    def check(self) -> None:
        """Raise UsageLimitExceeded when a free user has no generations left."""
        if self.is_pro:
            return
        if self.usage_today >= self.daily_quota:
            logger.info("Daily quota reached for user %d (%d/%d)",
                        self.user_id, self.usage_today, self.daily_quota)
            raise UsageLimitExceeded(self.usage_today, self.daily_quota)

    async def record(self, action_type: str) -> None:
        """Log a successful generation and update the local counter."""
        await log_usage(self.user_id, action_type)
        self.usage_today += 1
