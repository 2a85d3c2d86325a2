"""User model."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, String, DateTime, Integer
from sqlalchemy.orm import relationship

from campus_market.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    display_name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    # Listing entitlement. Only ever written through services/entitlement.py.
    has_used_free_listing = Column(Boolean, nullable=False, default=False)
    can_list_next = Column(Boolean, nullable=False, default=False)
    listings_count = Column(Integer, nullable=False, default=0)
    entitlement_version = Column(Integer, nullable=False, default=0)

    # Relationships
    listings = relationship("Listing", back_populates="seller")
    payments = relationship("Payment", back_populates="user")
