"""Auth router — campus-email registration, login, and user info."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from campus_market.config import settings
from campus_market.database import get_db
from campus_market.middleware.auth import (
    create_access_token,
    get_current_user,
    hash_password,
    verify_password,
)
from campus_market.models.user import User
from campus_market.schemas.auth import (
    EntitlementResponse,
    LoginRequest,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from campus_market.services.entitlement import Entitlement, check_quota

router = APIRouter(prefix="/api/auth", tags=["auth"])


def entitlement_to_response(entitlement: Entitlement) -> EntitlementResponse:
    return EntitlementResponse(
        has_used_free_listing=entitlement.has_used_free_listing,
        can_list_next=entitlement.can_list_next,
        listings_count=entitlement.listings_count,
        can_create_listing=check_quota(entitlement).allowed,
    )


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        created_at=user.created_at.isoformat(),
        entitlement=entitlement_to_response(Entitlement.from_user(user)),
    )


def _is_campus_email(email: str) -> bool:
    domain = settings.ALLOWED_EMAIL_DOMAIN.lower().lstrip("@")
    return email.lower().endswith("@" + domain)


@router.post("/register", response_model=UserResponse, status_code=201)
def register(req: RegisterRequest, db: Session = Depends(get_db)):
    """Register a new user with an institutional email address."""
    email = req.email.strip().lower()
    if not _is_campus_email(email):
        raise HTTPException(
            status_code=400,
            detail=f"Use your college email ID (@{settings.ALLOWED_EMAIL_DOMAIN.lstrip('@')})",
        )
    if len(req.password) < 8:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters")
    if not req.display_name.strip():
        raise HTTPException(status_code=400, detail="Display name is required")

    existing = db.query(User).filter(User.email == email).first()
    if existing:
        raise HTTPException(status_code=409, detail="Email already registered")

    user = User(
        email=email,
        password_hash=hash_password(req.password),
        display_name=req.display_name.strip(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return _user_to_response(user)


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    """Login and get a JWT."""
    user = db.query(User).filter(User.email == req.email.strip().lower()).first()
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return TokenResponse(access_token=create_access_token(user))


@router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    """Current user with their listing entitlement."""
    return _user_to_response(current_user)
