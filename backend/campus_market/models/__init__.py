"""SQLAlchemy ORM models."""

from campus_market.models.user import User
from campus_market.models.listing import Listing
from campus_market.models.payment import Payment
from campus_market.models.audit_log import AuditLog

__all__ = [
    "User",
    "Listing",
    "Payment",
    "AuditLog",
]
