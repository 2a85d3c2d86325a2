"""Listing request/response schemas."""

from typing import Optional, Union

from pydantic import BaseModel


class ListingCreate(BaseModel):
    # Everything optional so missing fields reach the service; wrong types
    # are turned into a 400 by the validation handler in main.py.
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[Union[float, str]] = None
    image: Optional[str] = None  # base64 data URI or remote URL


class ListingUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Union[float, str]] = None
    image: Optional[str] = None


class ListingCard(BaseModel):
    """Feed tile."""

    id: str
    title: str
    price: float
    image_url: str
    category: str


class ListingResponse(BaseModel):
    id: str
    title: str
    description: str
    category: str
    price: float
    image_url: str
    status: str
    seller_id: str
    seller_name: Optional[str]
    seller_email: Optional[str]
    created_at: str
    updated_at: Optional[str]


class ListingListResponse(BaseModel):
    listings: list[ListingCard]
    total: int


class ListingCreatedResponse(BaseModel):
    message: str = "Listing created"
    listing: ListingResponse


class StatusToggleResponse(BaseModel):
    message: str
    status: str


class SellerDetails(BaseModel):
    name: str
    email: str


class DashboardResponse(BaseModel):
    user_details: SellerDetails
    listings: list[ListingResponse]
