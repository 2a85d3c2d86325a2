"""Listings router — the public feed and listing detail."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from campus_market.database import get_db
from campus_market.models.listing import Listing
from campus_market.schemas.listing import ListingCard, ListingListResponse, ListingResponse
from campus_market.services import listing_service

router = APIRouter(prefix="/api/listings", tags=["listings"])


def listing_to_response(listing: Listing) -> ListingResponse:
    """Convert a Listing ORM model to a response schema."""
    return ListingResponse(
        id=listing.id,
        title=listing.title,
        description=listing.description,
        category=listing.category,
        price=listing.price,
        image_url=listing.image_url,
        status=listing.status,
        seller_id=listing.seller_id,
        seller_name=listing.seller_name,
        seller_email=listing.seller_email,
        created_at=listing.created_at.isoformat() if listing.created_at else "",
        updated_at=listing.updated_at.isoformat() if listing.updated_at else None,
    )


@router.get("", response_model=ListingListResponse)
def list_listings(
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    db: Session = Depends(get_db),
):
    """Active listings for the feed, optionally filtered by category and title."""
    listings = listing_service.list_active_listings(db, category=category, search=search)
    return ListingListResponse(
        listings=[
            ListingCard(
                id=l.id,
                title=l.title,
                price=l.price,
                image_url=l.image_url,
                category=l.category,
            )
            for l in listings
        ],
        total=len(listings),
    )


@router.get("/{listing_id}", response_model=ListingResponse)
def get_listing(listing_id: str, db: Session = Depends(get_db)):
    return listing_to_response(listing_service.get_listing(db, listing_id))
