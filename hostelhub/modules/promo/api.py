from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from hostelhub.core.dependencies import get_db
from hostelhub.modules.promo.service import validate_promo_code
from hostelhub.schemas.promo_code_schema import PromoCodeValidateRequest, PromoValidationResult

router = APIRouter()


@router.post("/promo-codes/validate", response_model=PromoValidationResult)
async def validate_promo(body: PromoCodeValidateRequest, db: AsyncSession = Depends(get_db)):
    return await validate_promo_code(db, body.code, body.amount)
