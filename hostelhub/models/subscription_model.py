# hostelhub/models/subscription_model.py
import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Index, func
from sqlalchemy.orm import relationship

from .base import Base

class Subscription(Base):
    __tablename__ = 'subscriptions'
    __table_args__ = (
        Index("ix_subscriptions_user_status_created", "user_id", "status", "created_at"),
    )
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey('profiles.id'), nullable=False, index=True)
    plan_type = Column(String(20), nullable=False)  # monthly | semester

    # pending -> active -> expired | cancelled
    status = Column(String(20), default='pending', nullable=False)

    # Null never grants access, whatever the status says
    expires_at = Column(DateTime(timezone=True), nullable=True)
    email = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    payments = relationship("Payment", back_populates="subscription")
