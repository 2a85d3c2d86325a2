"""Sell router — runs the listing admission pipeline."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from campus_market.config import settings
from campus_market.database import get_db
from campus_market.middleware.auth import get_identity
from campus_market.middleware.rate_limit import limiter
from campus_market.routers.listings import listing_to_response
from campus_market.schemas.listing import ListingCreate, ListingCreatedResponse
from campus_market.services import listing_service
from campus_market.services.image_store import get_image_store
from campus_market.services.listing_service import SellerIdentity
from campus_market.services.moderation import get_moderation_gate

router = APIRouter(prefix="/api/sell", tags=["sell"])


@router.post("", response_model=ListingCreatedResponse, status_code=201)
@limiter.limit(settings.SELL_RATE_LIMIT)
def create_listing(
    request: Request,
    req: ListingCreate,
    db: Session = Depends(get_db),
    identity: SellerIdentity = Depends(get_identity),
    image_store=Depends(get_image_store),
    gate=Depends(get_moderation_gate),
):
    """Create a listing.

    402 when the free listing is used and no unlock is pending, 409/422 when
    the image is rejected by moderation.
    """
    listing = listing_service.submit_listing(
        db=db,
        identity=identity,
        fields=req.model_dump(exclude={"image"}),
        image_data=req.image,
        image_store=image_store,
        gate=gate,
    )
    return ListingCreatedResponse(listing=listing_to_response(listing))
