"""Payment service — the simulated "unlock one more listing" purchase."""

import json
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campus_market.config import settings
from campus_market.models.audit_log import AuditLog
from campus_market.models.payment import Payment
from campus_market.services.entitlement import Entitlement, grant_next_listing, load_entitlement
from campus_market.services.errors import PersistenceFailure

logger = logging.getLogger(__name__)


def unlock_next_listing(db: Session, user_id: str) -> tuple[Entitlement, bool]:
    """Grant the next listing.

    Returns ``(entitlement, granted)``. A payment record is written only when
    the grant actually flipped; unlocking twice does not charge twice.
    """
    granted = grant_next_listing(db, user_id)
    if granted:
        db.add(Payment(user_id=user_id, amount=settings.LISTING_UNLOCK_PRICE, type="listing"))
        db.add(AuditLog(
            entity_type="user",
            entity_id=user_id,
            action="listing_unlocked",
            actor_id=user_id,
            old_data=json.dumps({"can_list_next": False}),
            new_data=json.dumps({"can_list_next": True}),
        ))
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to unlock listing for user %s", user_id)
        raise PersistenceFailure() from e

    if granted:
        logger.info("Listing unlocked for user %s", user_id)
    return load_entitlement(db, user_id), granted
