"""Auth request/response schemas."""

from pydantic import BaseModel


class RegisterRequest(BaseModel):
    email: str
    password: str
    display_name: str


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class EntitlementResponse(BaseModel):
    has_used_free_listing: bool
    can_list_next: bool
    listings_count: int
    can_create_listing: bool


class UserResponse(BaseModel):
    id: str
    email: str
    display_name: str
    created_at: str
    entitlement: EntitlementResponse
