from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from hostelhub.models import PromoCode, PromoCodeUsage


class PromoCodeRepository:
    async def get_active_by_code(self, db: AsyncSession, code: str) -> Optional[PromoCode]:
        stmt = select(PromoCode).where(
            PromoCode.code == code.strip().upper(),
            PromoCode.is_active.is_(True),
        )
        result = await db.execute(stmt)
        return result.scalars().first()

    async def record_usage(
        self,
        db: AsyncSession,
        *,
        promo_code_id: str,
        subscription_id: str,
        payment_id: Optional[str],
        user_id: Optional[str],
        amount: int,
    ) -> PromoCodeUsage:
        usage = PromoCodeUsage(
            promo_code_id=promo_code_id,
            subscription_id=subscription_id,
            payment_id=payment_id,
            user_id=user_id,
            amount=amount,
        )
        db.add(usage)
        # Increment in SQL so concurrent checkouts don't lose updates
        await db.execute(
            update(PromoCode)
            .where(PromoCode.id == promo_code_id)
            .values(used_count=PromoCode.used_count + 1)
        )
        await db.commit()
        return usage


promo_code_repository = PromoCodeRepository()
