import uuid

from sqlalchemy import Column, String, DateTime, func

from .base import Base


class Profile(Base):
    __tablename__ = "profiles"
    # Same id as the auth provider's user
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, index=True, nullable=True)
    full_name = Column(String(255), nullable=True)
    phone = Column(String(32), nullable=True)
    role = Column(String(50), nullable=False, default="student")  # student | admin
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
