import uuid

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Numeric, func
from sqlalchemy.orm import relationship

from .base import Base


class PromoCode(Base):
    __tablename__ = "promo_codes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    code = Column(String(64), unique=True, nullable=False, index=True)  # stored upper-case
    description = Column(String(255), nullable=True)
    discount_type = Column(String(20), nullable=False)  # percentage | fixed (GHS)
    discount_value = Column(Numeric(10, 2), nullable=False)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    valid_from = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    usages = relationship("PromoCodeUsage", back_populates="promo_code")


class PromoCodeUsage(Base):
    __tablename__ = "promo_code_usage"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    promo_code_id = Column(String(36), ForeignKey("promo_codes.id"), nullable=False, index=True)
    subscription_id = Column(String(36), ForeignKey("subscriptions.id"), nullable=False, index=True)
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=True)
    amount = Column(Integer, nullable=False)  # charged amount in pesewas
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    promo_code = relationship("PromoCode", back_populates="usages")
