"""Store receipt model."""

from sqlalchemy import Column, String, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Receipt(Base):
    """Processed app store transaction, credited at most once."""

    __tablename__ = "receipts"
    __table_args__ = (UniqueConstraint("user_id", "transaction_id", name="uq_receipts_user_transaction"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    store = Column(String, nullable=False)
    product_id = Column(String, nullable=False)
    product_type = Column(String, nullable=False, default="consumable")
    transaction_id = Column(String, nullable=False, index=True)
    credits_granted = Column(Integer, nullable=False, default=0)
    raw = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="receipts")
