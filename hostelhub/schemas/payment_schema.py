# hostelhub/schemas/payment_schema.py
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

PaymentStatusValue = Literal["pending", "success", "failed", "cancelled"]


class PaymentCreateRequest(BaseModel):
    subscription_id: Optional[str] = Field(default=None, alias="subscriptionId")
    amount: Optional[int] = Field(default=None, description="Amount in pesewas")
    phone: Optional[str] = None
    email: Optional[str] = None
    promo_code: Optional[str] = Field(default=None, alias="promoCode")

    model_config = ConfigDict(populate_by_name=True)


class Payment(BaseModel):
    id: str
    subscription_id: str
    amount: int
    provider: str
    provider_ref: Optional[str] = None
    status: PaymentStatusValue
    phone: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("metadata_json", "metadata"))
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentCreateResponse(BaseModel):
    payment: Payment
    authorization_url: str = Field(alias="authorizationUrl")

    model_config = ConfigDict(populate_by_name=True)


class WebhookAck(BaseModel):
    received: bool = True


class SubscriptionPaymentsResponse(BaseModel):
    payments: List[Payment]
