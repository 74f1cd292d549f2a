import logging
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from hostelhub.models import PromoCode
from hostelhub.modules.access.entitlement import utcnow
from hostelhub.repository.promo_code_repository import promo_code_repository
from hostelhub.schemas.promo_code_schema import PromoValidationResult
from hostelhub.services.paystack_service import ghs_to_pesewas

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def calculate_discount(promo: PromoCode, amount: int) -> int:
    """Discount in pesewas for ``amount`` pesewas, never more than the amount itself."""
    if promo.discount_type == "percentage":
        discount = (Decimal(amount) * Decimal(str(promo.discount_value)) / 100).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        discount = int(discount)
    else:
        # Fixed discounts are configured in cedis
        discount = ghs_to_pesewas(promo.discount_value)
    return min(max(discount, 0), amount)


def check_promo_code(promo: Optional[PromoCode], now: datetime) -> Optional[str]:
    """Returns the reason the code can't be used, or None when it is usable."""
    if promo is None:
        return "Invalid or inactive promo code"
    if promo.valid_until and now > _aware(promo.valid_until):
        return "This promo code has expired"
    if promo.max_uses and promo.used_count >= promo.max_uses:
        return "This promo code has reached its usage limit"
    if promo.valid_from and now < _aware(promo.valid_from):
        return "This promo code is not yet valid"
    return None


async def find_usable_promo_code(
    db: AsyncSession, code: str, now: Optional[datetime] = None
) -> Tuple[Optional[PromoCode], Optional[str]]:
    promo = await promo_code_repository.get_active_by_code(db, code)
    error = check_promo_code(promo, now or utcnow())
    if error:
        return None, error
    return promo, None


async def validate_promo_code(db: AsyncSession, code: str, amount: int) -> PromoValidationResult:
    promo, error = await find_usable_promo_code(db, code)
    if error:
        return PromoValidationResult(valid=False, discount_amount=0, error=error)
    return PromoValidationResult(valid=True, discount_amount=calculate_discount(promo, amount))


async def record_promo_code_usage(
    db: AsyncSession,
    promo: PromoCode,
    subscription_id: str,
    payment_id: Optional[str],
    user_id: Optional[str],
    amount: int,
) -> None:
    await promo_code_repository.record_usage(
        db,
        promo_code_id=promo.id,
        subscription_id=subscription_id,
        payment_id=payment_id,
        user_id=user_id,
        amount=amount,
    )
    logger.info("Recorded promo code %s usage for subscription %s", promo.code, subscription_id)
