import calendar
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from hostelhub.core.cache import AccessCaches
from hostelhub.models import Payment, Subscription
from hostelhub.modules.access.entitlement import as_utc, has_access, utcnow
from hostelhub.modules.subscription.security_events import (
    log_activation_without_payment,
    log_unauthorized_activation_attempt,
)
from hostelhub.repository.payment_repository import payment_repository
from hostelhub.repository.subscription_repository import subscription_repository
from hostelhub.schemas.session_schema import SessionUser

logger = logging.getLogger(__name__)


def add_months(moment: datetime, months: int) -> datetime:
    """Calendar-month arithmetic, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


class SubscriptionService:
    PLAN_DURATION_MONTHS = {
        "monthly": 1,
        "semester": 4,
    }

    def plan_months(self, plan_type: str) -> int:
        months = self.PLAN_DURATION_MONTHS.get(plan_type)
        if months is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid plan type")
        return months

    def compute_expiry(self, plan_type: str, start: Optional[datetime] = None) -> datetime:
        return add_months(start or utcnow(), self.plan_months(plan_type))

    async def create_subscription(
        self,
        db: AsyncSession,
        user: SessionUser,
        plan_type: str,
    ) -> Subscription:
        """Creates a pending subscription; it becomes active once a payment is reconciled."""
        expires_at = self.compute_expiry(plan_type)
        subscription = await subscription_repository.create(
            db,
            user_id=user.id,
            plan_type=plan_type,
            expires_at=expires_at,
            email=user.email or user.metadata.get("email"),
            phone=user.metadata.get("phone"),
        )
        logger.info("Created pending %s subscription %s for user %s", plan_type, subscription.id, user.id)
        return subscription

    async def activate_subscription(
        self,
        db: AsyncSession,
        subscription_id: str,
        caches: Optional[AccessCaches] = None,
    ) -> Optional[Subscription]:
        """
        Sets the subscription to 'active' without looking at its current status.

        Running this twice leaves the same row behind, which is what lets the
        browser callback and the webhook race safely. ``expires_at`` is kept as
        it was set at creation.
        """
        subscription = await subscription_repository.set_active(db, subscription_id)
        if subscription is None:
            logger.error("Could not find subscription %s to activate", subscription_id)
            return None

        if caches is not None:
            caches.clear_subscription(subscription.user_id)
        logger.info("Subscription %s for user %s is active", subscription.id, subscription.user_id)
        return subscription

    async def get_active_subscription(
        self,
        db: AsyncSession,
        user: SessionUser,
        caches: Optional[AccessCaches] = None,
    ) -> Optional[Subscription]:
        """
        Entitling subscription for the user, if any.

        When none is active but a pending subscription already has a successful
        payment (a reconciliation that never completed), it is activated here.
        """
        subscription = await subscription_repository.get_latest_active(db, user.id)
        if subscription is not None and has_access(subscription):
            return subscription
        if subscription is not None:
            logger.warning(
                "Latest active subscription %s for user %s is not entitling (expires_at=%s)",
                subscription.id,
                user.id,
                subscription.expires_at,
            )

        pending = await subscription_repository.get_latest_pending_with_successful_payment(db, user.id)
        if pending is None:
            return None

        logger.info("Found pending subscription %s with a successful payment, activating", pending.id)
        activated = await self.activate_subscription(db, pending.id, caches=caches)
        if activated is not None and has_access(activated):
            return activated
        return None

    async def renew_subscription(
        self,
        db: AsyncSession,
        subscription_id: str,
        plan_type: str,
        renewed_by: SessionUser,
        is_admin: bool,
        caches: Optional[AccessCaches] = None,
    ) -> Subscription:
        """
        Extends a subscription by one plan period and makes it active.

        Only admins may renew. The new period runs from the current expiry, or
        from now when the subscription has already lapsed or never had one.
        Renewing a subscription that has no successful payment is allowed but
        raises a security event.
        """
        if not is_admin:
            log_unauthorized_activation_attempt(
                subscription_id, renewed_by.id, "Renewal requested by a non-admin user"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="The user does not have admin privileges",
            )

        months = self.plan_months(plan_type)
        subscription = await subscription_repository.get(db, subscription_id)
        if subscription is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")

        start = utcnow()
        if subscription.expires_at is not None:
            start = max(start, as_utc(subscription.expires_at))
        expires_at = add_months(start, months)

        if not await payment_repository.has_successful_payment(db, subscription.id):
            log_activation_without_payment(
                subscription.id,
                subscription.user_id,
                f"Renewed by admin {renewed_by.id} without a successful payment",
            )

        subscription = await subscription_repository.renew(
            db, subscription, plan_type=plan_type, expires_at=expires_at
        )
        if caches is not None:
            caches.clear_subscription(subscription.user_id)
        logger.info(
            "Subscription %s renewed on the %s plan until %s by %s",
            subscription.id,
            plan_type,
            expires_at,
            renewed_by.id,
        )
        return subscription

    async def list_payments(self, db: AsyncSession, user: SessionUser, subscription_id: str) -> List[Payment]:
        subscription = await subscription_repository.get(db, subscription_id)
        # Someone else's subscription looks the same as a missing one
        if subscription is None or subscription.user_id != user.id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
        return await payment_repository.list_for_subscription(db, subscription_id)

    async def expire_overdue_subscriptions(self, db: AsyncSession, now: Optional[datetime] = None) -> int:
        count = await subscription_repository.expire_overdue(db, now or utcnow())
        logger.info("Marked %d subscriptions as expired", count)
        return count


subscription_service = SubscriptionService()
