from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from hostelhub.models import Payment, Subscription


class SubscriptionRepository:
    async def create(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        plan_type: str,
        expires_at: Optional[datetime],
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Subscription:
        subscription = Subscription(
            user_id=user_id,
            plan_type=plan_type,
            status="pending",
            expires_at=expires_at,
            email=email,
            phone=phone,
        )
        db.add(subscription)
        await db.commit()
        await db.refresh(subscription)
        return subscription

    async def get(self, db: AsyncSession, subscription_id: str) -> Optional[Subscription]:
        return await db.get(Subscription, subscription_id)

    async def get_latest_active(self, db: AsyncSession, user_id: str) -> Optional[Subscription]:
        """Newest subscription with status 'active'. Expiry is judged by the caller."""
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id, Subscription.status == "active")
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalars().first()

    async def get_latest_pending_with_successful_payment(
        self, db: AsyncSession, user_id: str
    ) -> Optional[Subscription]:
        stmt = (
            select(Subscription)
            .join(Payment, Payment.subscription_id == Subscription.id)
            .where(
                Subscription.user_id == user_id,
                Subscription.status == "pending",
                Payment.status == "success",
            )
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalars().first()

    async def set_active(self, db: AsyncSession, subscription_id: str) -> Optional[Subscription]:
        """Unconditionally sets status to 'active'; re-activating an active row is a harmless overwrite."""
        subscription = await db.get(Subscription, subscription_id)
        if not subscription:
            return None
        subscription.status = "active"
        await db.commit()
        await db.refresh(subscription)
        return subscription

    async def renew(
        self,
        db: AsyncSession,
        subscription: Subscription,
        *,
        plan_type: str,
        expires_at: datetime,
    ) -> Subscription:
        subscription.plan_type = plan_type
        subscription.expires_at = expires_at
        subscription.status = "active"
        await db.commit()
        await db.refresh(subscription)
        return subscription

    async def expire_overdue(self, db: AsyncSession, now: datetime) -> int:
        result = await db.execute(
            update(Subscription)
            .where(Subscription.status == "active", Subscription.expires_at < now)
            .values(status="expired")
        )
        await db.commit()
        return result.rowcount or 0


subscription_repository = SubscriptionRepository()
