"""Audit trail for listing and entitlement changes.

Written by the listing service (created, status_changed, updated) and the
payment service (listing_unlocked). ``old_data``/``new_data`` hold only the
fields the action touched, as JSON text.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, Text

from campus_market.database import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_type = Column(String(20), nullable=False)  # listing | user
    entity_id = Column(String(36), nullable=False, index=True)
    action = Column(String(30), nullable=False)  # created | status_changed | updated | listing_unlocked
    actor_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    old_data = Column(Text, nullable=True)
    new_data = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
