from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from hostelhub.models import Payment


class PaymentRepository:
    async def create(
        self,
        db: AsyncSession,
        *,
        subscription_id: str,
        amount: int,
        phone: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        provider: str = "paystack",
    ) -> Payment:
        payment = Payment(
            subscription_id=subscription_id,
            amount=amount,
            provider=provider,
            status="pending",
            phone=phone,
            metadata_json=metadata or {},
        )
        db.add(payment)
        await db.commit()
        await db.refresh(payment)
        return payment

    async def get(self, db: AsyncSession, payment_id: str) -> Optional[Payment]:
        return await db.get(Payment, payment_id)

    async def get_by_provider_ref(self, db: AsyncSession, provider_ref: str) -> Optional[Payment]:
        result = await db.execute(select(Payment).where(Payment.provider_ref == provider_ref))
        return result.scalars().first()

    async def get_latest_pending_for_subscription(
        self, db: AsyncSession, subscription_id: str
    ) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.subscription_id == subscription_id, Payment.status == "pending")
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalars().first()

    async def list_for_subscription(self, db: AsyncSession, subscription_id: str) -> List[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.subscription_id == subscription_id)
            .order_by(Payment.created_at.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def has_successful_payment(self, db: AsyncSession, subscription_id: str) -> bool:
        stmt = (
            select(Payment.id)
            .where(Payment.subscription_id == subscription_id, Payment.status == "success")
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def update_status(
        self,
        db: AsyncSession,
        payment: Payment,
        status: str,
        provider_ref: Optional[str] = None,
    ) -> Payment:
        payment.status = status
        if provider_ref:
            payment.provider_ref = provider_ref
        await db.commit()
        await db.refresh(payment)
        return payment


payment_repository = PaymentRepository()
