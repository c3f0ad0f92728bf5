"""
Subscription maintenance jobs.

Runs the expiry sweep and the purchase-to-subscription repair outside of
request handling. The API process runs the expiry sweep on a timer; the
full repair runs from scripts/reconcile_subscriptions.py (cron).
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.timeutils import utcnow
from services.subscription_manager import SubscriptionManager

logger = logging.getLogger(__name__)


class SubscriptionReconciliationJob:
    """
    Keeps UserSubscription rows consistent with time and with the ledger.

    Handles:
    - ACTIVE subscriptions past their end date
    - Active subscription purchases with no subscription row
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        default_plan_slug: Optional[str] = None,
    ):
        """
        Initialize the job.

        Args:
            session_factory: Callable returning a new AsyncSession (an
                async_sessionmaker)
            default_plan_slug: Fallback plan for unmapped subscription products
        """
        self.session_factory = session_factory
        self.default_plan_slug = default_plan_slug

    async def expire(self, now: Optional[datetime] = None) -> int:
        """Run the expiry sweep in its own session."""
        async with self.session_factory() as db:
            manager = SubscriptionManager(db, default_plan_slug=self.default_plan_slug)
            return await manager.check_and_expire_subscriptions(now=now)

    async def run(self, repair: bool = True, now: Optional[datetime] = None) -> dict:
        """
        Execute the job.

        Args:
            repair: Also create missing subscriptions for active purchases
            now: Reference time (defaults to the current time)

        Returns:
            Summary of the run
        """
        now = now or utcnow()
        logger.info("Starting subscription reconciliation job")

        results = {
            "started_at": now.isoformat(),
            "subscriptions_expired": 0,
            "users_checked": 0,
            "subscriptions_created": 0,
            "errors": 0,
        }

        results["subscriptions_expired"] = await self.expire(now=now)

        if repair:
            async with self.session_factory() as db:
                manager = SubscriptionManager(db, default_plan_slug=self.default_plan_slug)
                summary = await manager.reconcile_all(now=now)
            results.update(summary)

        results["completed_at"] = utcnow().isoformat()
        logger.info(f"Subscription reconciliation completed: {results}")
        return results
