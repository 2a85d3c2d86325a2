"""Listing model."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from campus_market.database import Base


class Listing(Base):
    __tablename__ = "listings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(50), nullable=False, index=True)
    price = Column(Numeric(10, 2, asdecimal=False), nullable=False)
    image_url = Column(String(1000), nullable=False)
    image_public_id = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="active", index=True)  # active | sold

    # Seller snapshot taken from identity claims at creation time
    seller_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    seller_name = Column(String(255), nullable=True)
    seller_email = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, nullable=True)

    # Relationships
    seller = relationship("User", back_populates="listings")
