# hostelhub/schemas/subscription_schema.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Literal, Optional
from datetime import datetime

PlanType = Literal["monthly", "semester"]
SubscriptionStatusValue = Literal["pending", "active", "expired", "cancelled"]

class SubscriptionCreate(BaseModel):
    plan_type: str = Field(alias="planType")

    model_config = ConfigDict(populate_by_name=True)

class Subscription(BaseModel):
    id: str
    user_id: str
    plan_type: PlanType
    status: SubscriptionStatusValue
    expires_at: Optional[datetime] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class SubscriptionRenew(BaseModel):
    plan_type: str = Field(alias="planType")

    model_config = ConfigDict(populate_by_name=True)

class SubscriptionSnapshot(BaseModel):
    """The slice of a subscription the access gate keeps in its cache."""
    id: str
    user_id: str
    status: SubscriptionStatusValue
    expires_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class SubscriptionResponse(BaseModel):
    subscription: Subscription

class MySubscriptionResponse(BaseModel):
    subscription: Optional[Subscription] = None
    has_access: bool = Field(alias="hasAccess")

    model_config = ConfigDict(populate_by_name=True)
