"""Generation job model."""

from sqlalchemy import Column, String, DateTime, Float, ForeignKey, Integer, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class GenerationJob(Base):
    """Queued AI image generation request."""

    __tablename__ = "generation_jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    prompt = Column(Text, nullable=False)
    aspect = Column(String, nullable=False)
    style_preset = Column(String, nullable=False, default="realistic")
    chromatic = Column(Float, nullable=False, default=1.0)
    status = Column(String, nullable=False, default="queued", index=True)
    credit_cost = Column(Integer, nullable=False)
    original_path = Column(String, nullable=True)
    thumbnail_path = Column(String, nullable=True)
    error = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="generation_jobs")
