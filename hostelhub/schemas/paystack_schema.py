# hostelhub/schemas/paystack_schema.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, Optional


class PaystackCustomer(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class PaystackInitializeData(BaseModel):
    authorization_url: str
    access_code: str
    reference: str


class PaystackTransaction(BaseModel):
    amount: int
    currency: Optional[str] = None
    transaction_date: Optional[str] = None
    status: str
    reference: str
    customer: Optional[PaystackCustomer] = None
    metadata: Optional[Dict[str, Any]] = None
    paid_at: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("metadata", mode="before")
    @classmethod
    def _blank_metadata(cls, value):
        # Paystack sends "" when a transaction was started without metadata
        return value if isinstance(value, dict) else None


class PaystackWebhookEvent(BaseModel):
    event: str
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def reference(self) -> Optional[str]:
        # References may arrive as JSON numbers
        value = self.data.get("reference")
        if value is None or value == "":
            return None
        return str(value)
