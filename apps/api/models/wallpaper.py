"""Catalog wallpaper model."""

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String
from sqlalchemy.sql import func
import uuid

from database import Base


class Wallpaper(Base):
    """Purchasable catalog item."""

    __tablename__ = "wallpapers"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)
    category = Column(String, nullable=True, index=True)
    style = Column(String, nullable=True)
    tags = Column(JSON, nullable=True)
    price = Column(Integer, nullable=False, default=1)
    sales_count = Column(Integer, nullable=False, default=0)
    original_path = Column(String, nullable=True)
    thumbnail_path = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
