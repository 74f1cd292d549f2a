from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class PromoCodeValidateRequest(BaseModel):
    code: str
    amount: int = Field(gt=0, description="Amount in pesewas")


class PromoValidationResult(BaseModel):
    valid: bool
    discount_amount: int = Field(default=0, alias="discountAmount")
    error: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)
