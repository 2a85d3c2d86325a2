"""Dashboard router — a seller's own listings, status toggle, and edits."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from campus_market.database import get_db
from campus_market.middleware.auth import get_identity
from campus_market.routers.listings import listing_to_response
from campus_market.schemas.listing import (
    DashboardResponse,
    ListingResponse,
    ListingUpdate,
    SellerDetails,
    StatusToggleResponse,
)
from campus_market.services import listing_service
from campus_market.services.image_store import get_image_store
from campus_market.services.listing_service import SellerIdentity
from campus_market.services.moderation import get_moderation_gate

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("", response_model=DashboardResponse)
def my_listings(
    db: Session = Depends(get_db),
    identity: SellerIdentity = Depends(get_identity),
):
    listings = listing_service.list_seller_listings(db, identity.user_id)
    return DashboardResponse(
        user_details=SellerDetails(
            name=identity.display_name or "CampusKart User",
            email=identity.email or "",
        ),
        listings=[listing_to_response(l) for l in listings],
    )


@router.get("/{listing_id}", response_model=ListingResponse)
def my_listing(
    listing_id: str,
    db: Session = Depends(get_db),
    identity: SellerIdentity = Depends(get_identity),
):
    return listing_to_response(listing_service.get_owned_listing(db, identity.user_id, listing_id))


@router.put("/{listing_id}", response_model=StatusToggleResponse)
def toggle_listing_status(
    listing_id: str,
    db: Session = Depends(get_db),
    identity: SellerIdentity = Depends(get_identity),
):
    """Toggle a listing between active and sold (owner only)."""
    listing = listing_service.toggle_status(db, identity.user_id, listing_id)
    return StatusToggleResponse(message=f"Listing marked as {listing.status}", status=listing.status)


@router.patch("/{listing_id}", response_model=ListingResponse)
def edit_listing(
    listing_id: str,
    req: ListingUpdate,
    db: Session = Depends(get_db),
    identity: SellerIdentity = Depends(get_identity),
    image_store=Depends(get_image_store),
    gate=Depends(get_moderation_gate),
):
    """Edit title, description, price or image (owner only)."""
    listing = listing_service.update_listing(
        db,
        identity.user_id,
        listing_id,
        req.model_dump(exclude_none=True),
        image_store=image_store,
        gate=gate,
    )
    return listing_to_response(listing)
