"""Payments router — simulated unlock of one more listing."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_market.database import get_db
from campus_market.middleware.auth import get_identity
from campus_market.routers.auth import entitlement_to_response
from campus_market.schemas.payment import UnlockResponse
from campus_market.services.listing_service import SellerIdentity
from campus_market.services.payment_service import unlock_next_listing

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("/unlock", response_model=UnlockResponse)
def unlock(
    db: Session = Depends(get_db),
    identity: SellerIdentity = Depends(get_identity),
):
    entitlement, granted = unlock_next_listing(db, identity.user_id)
    message = "Listing permission unlocked!" if granted else "Your next listing is already unlocked."
    return UnlockResponse(message=message, entitlement=entitlement_to_response(entitlement))
