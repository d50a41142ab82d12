"""Ownership record model."""

from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class OwnershipRecord(Base):
    """Permanent right of a user to a wallpaper or a generated image."""

    __tablename__ = "ownership_records"
    __table_args__ = (UniqueConstraint("user_id", "reference_id", name="uq_ownership_user_reference"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    item_type = Column(String, nullable=False)
    reference_id = Column(String, nullable=False, index=True)
    source = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="ownership_records")
