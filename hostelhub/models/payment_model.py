import uuid

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, JSON, func
from sqlalchemy.orm import relationship

from .base import Base


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_subscription_status_created", "subscription_id", "status", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    subscription_id = Column(String(36), ForeignKey("subscriptions.id"), nullable=False, index=True)

    amount = Column(Integer, nullable=False)  # pesewas
    provider = Column(String(32), nullable=False, default="paystack")
    provider_ref = Column(String(255), nullable=True, unique=True, index=True)

    status = Column(String(20), nullable=False, default="pending")  # pending|success|failed|cancelled
    phone = Column(String(32), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    subscription = relationship("Subscription", back_populates="payments")
