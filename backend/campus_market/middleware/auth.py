"""JWT authentication middleware and dependencies.

Tokens are the identity provider's claims: ``sub`` (user id), ``email`` and
``name``. Seller identity on new listings is taken from these claims as-is.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from campus_market.config import settings
from campus_market.database import get_db
from campus_market.models.user import User
from campus_market.services.errors import Unauthenticated
from campus_market.services.listing_service import SellerIdentity

security = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    """Hash a password using bcrypt directly."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def create_access_token(user: User) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        "sub": user.id,
        "email": user.email,
        "name": user.display_name,
        "exp": expire,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise Unauthenticated("Invalid or expired token")


def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> SellerIdentity:
    """Claims of the authenticated caller, without a database lookup."""
    if credentials is None:
        raise Unauthenticated()
    payload = decode_token(credentials.credentials)
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthenticated("Invalid token payload")
    return SellerIdentity(
        user_id=user_id,
        email=payload.get("email"),
        display_name=payload.get("name"),
    )


def get_current_user(
    identity: SellerIdentity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> User:
    user = db.query(User).filter(User.id == identity.user_id).first()
    if not user:
        raise Unauthenticated("User not found")
    return user
