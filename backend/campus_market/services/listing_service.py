"""Listing service — admission pipeline, feed queries, and owner edits."""

import json
import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from campus_market.config import settings
from campus_market.models.audit_log import AuditLog
from campus_market.models.listing import Listing
from campus_market.services.entitlement import load_entitlement, require_quota, spend_quota
from campus_market.services.errors import (
    InvalidInput,
    NotFound,
    OwnershipViolation,
    PersistenceFailure,
    QuotaDenied,
    UserNotFound,
)
from campus_market.services.image_store import StoredImage

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
STATUS_SOLD = "sold"
MAX_TITLE_LENGTH = 200  # listings.title column width


@dataclass(frozen=True)
class SellerIdentity:
    """Claims about the caller, as issued by the identity provider."""

    user_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────

def parse_price(value: Any) -> float:
    """Positive, finite number (strings allowed). Rounded to cents."""
    if value is None or isinstance(value, bool):
        raise InvalidInput("Price is required")
    try:
        price = float(str(value).strip())
    except ValueError:
        raise InvalidInput("Price must be a number")
    if not math.isfinite(price) or price <= 0:
        raise InvalidInput("Price must be a positive number")
    return round(price, 2)


def _required_text(fields: dict, name: str) -> str:
    value = fields.get(name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"Missing field: {name}")
    return value.strip()


def _title(fields: dict) -> str:
    title = _required_text(fields, "title")
    if len(title) > MAX_TITLE_LENGTH:
        raise InvalidInput(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    return title


def normalize_category(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput("Missing field: category")
    wanted = value.strip().lower()
    for category in settings.PRODUCT_CATEGORIES:
        if category.lower() == wanted and category != "All":
            return category
    raise InvalidInput("Please select a valid category for your listing")


def validate_new_listing(fields: dict, image_data: Any) -> dict:
    """Check a submission before any external service is contacted."""
    clean = {
        "title": _title(fields),
        "description": _required_text(fields, "description"),
        "category": normalize_category(fields.get("category")),
        "price": parse_price(fields.get("price")),
    }
    if not isinstance(image_data, str) or not image_data.strip():
        raise InvalidInput("Missing field: image")
    return clean


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _audit(db: Session, entity_type: str, entity_id: str, action: str, actor_id: str,
           old_data: Optional[dict] = None, new_data: Optional[dict] = None) -> None:
    db.add(AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        old_data=json.dumps(old_data) if old_data is not None else None,
        new_data=json.dumps(new_data) if new_data is not None else None,
    ))


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to persist %s", what)
        raise PersistenceFailure() from e


def _store_moderated_image(image_data: str, image_store, gate, moderate: bool = True) -> StoredImage:
    """Upload, then (optionally) moderate. Raises on upload failure or rejection."""
    stored = image_store.upload(image_data)
    if not moderate:
        return stored

    verdict = gate.moderate(stored.secure_url)
    if not verdict.safe:
        if settings.CLEANUP_REJECTED_UPLOADS and stored.public_id:
            image_store.delete(stored.public_id)
        verdict.raise_for_rejection()
    return stored


def _owned_listing(db: Session, actor_id: str, listing_id: str) -> Listing:
    listing = get_listing(db, listing_id)
    if listing.seller_id != actor_id:
        raise OwnershipViolation()
    return listing


# ─────────────────────────────────────────────────────────────────────────────
# Admission pipeline
# ─────────────────────────────────────────────────────────────────────────────

def submit_listing(
    db: Session,
    identity: SellerIdentity,
    fields: dict,
    image_data: Any,
    image_store,
    gate,
) -> Listing:
    """Admit a new listing.

    Order is fixed: validate, check quota, upload, moderate (general then
    contraband), insert, consume quota. Insert and quota consumption commit
    together; uploads are not rolled back when a later step fails.
    """
    clean = validate_new_listing(fields, image_data)

    observed = load_entitlement(db, identity.user_id)
    require_quota(observed)

    stored = _store_moderated_image(image_data, image_store, gate)

    listing = Listing(
        id=str(uuid.uuid4()),
        title=clean["title"],
        description=clean["description"],
        category=clean["category"],
        price=clean["price"],
        image_url=stored.secure_url,
        image_public_id=stored.public_id,
        status=STATUS_ACTIVE,
        seller_id=identity.user_id,
        seller_name=identity.display_name,
        seller_email=identity.email,
    )
    try:
        db.add(listing)
        db.flush()
        decision = spend_quota(db, identity.user_id, observed)
        _audit(db, "listing", listing.id, "created", identity.user_id, new_data={
            "title": listing.title,
            "category": listing.category,
            "price": listing.price,
            "authorized_by": decision.via,
        })
    except (QuotaDenied, UserNotFound):
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Failed to persist listing for user %s", identity.user_id)
        raise PersistenceFailure() from e

    _commit(db, "listing")
    db.refresh(listing)
    logger.info("Listing %s admitted for user %s via %s", listing.id, identity.user_id, decision.via)
    return listing


# ─────────────────────────────────────────────────────────────────────────────
# Queries
# ─────────────────────────────────────────────────────────────────────────────

def get_listing(db: Session, listing_id: str) -> Listing:
    listing = db.query(Listing).filter(Listing.id == listing_id).first()
    if not listing:
        raise NotFound("Listing not found")
    return listing


def list_active_listings(
    db: Session,
    category: Optional[str] = None,
    search: Optional[str] = None,
) -> list[Listing]:
    """Feed: active listings, newest first, optionally filtered."""
    query = db.query(Listing).filter(Listing.status == STATUS_ACTIVE)
    if category and category.strip().lower() != "all":
        query = query.filter(func.lower(Listing.category) == category.strip().lower())
    if search and search.strip():
        query = query.filter(func.lower(Listing.title).contains(search.strip().lower()))
    return query.order_by(Listing.created_at.desc()).all()


def list_seller_listings(db: Session, seller_id: str) -> list[Listing]:
    return (
        db.query(Listing)
        .filter(Listing.seller_id == seller_id)
        .order_by(Listing.created_at.desc())
        .all()
    )


def get_owned_listing(db: Session, actor_id: str, listing_id: str) -> Listing:
    return _owned_listing(db, actor_id, listing_id)


# ─────────────────────────────────────────────────────────────────────────────
# Owner mutations
# ─────────────────────────────────────────────────────────────────────────────

def toggle_status(db: Session, actor_id: str, listing_id: str) -> Listing:
    """Flip active <-> sold."""
    listing = _owned_listing(db, actor_id, listing_id)
    old_status = listing.status
    listing.status = STATUS_ACTIVE if old_status == STATUS_SOLD else STATUS_SOLD
    listing.updated_at = datetime.now(timezone.utc)

    _audit(db, "listing", listing.id, "status_changed", actor_id,
           old_data={"status": old_status}, new_data={"status": listing.status})
    _commit(db, "listing status")
    db.refresh(listing)
    return listing


def update_listing(
    db: Session,
    actor_id: str,
    listing_id: str,
    changes: dict,
    image_store=None,
    gate=None,
    moderate_images: Optional[bool] = None,
) -> Listing:
    """Edit title/description/price and optionally replace the image."""
    listing = _owned_listing(db, actor_id, listing_id)

    updates: dict = {}
    if changes.get("title") is not None:
        updates["title"] = _title(changes)
    if changes.get("description") is not None:
        updates["description"] = _required_text(changes, "description")
    if changes.get("price") is not None:
        updates["price"] = parse_price(changes["price"])

    image_data = changes.get("image")
    if image_data is not None and (not isinstance(image_data, str) or not image_data.strip()):
        raise InvalidInput("Image must be a non-empty data URI or URL")
    if not updates and image_data is None:
        raise InvalidInput("Nothing to update")

    if image_data is not None:
        if moderate_images is None:
            moderate_images = settings.MODERATE_EDITED_IMAGES
        stored = _store_moderated_image(image_data, image_store, gate, moderate=moderate_images)
        updates["image_url"] = stored.secure_url
        updates["image_public_id"] = stored.public_id

    old_data = {name: getattr(listing, name) for name in updates}
    for name, value in updates.items():
        setattr(listing, name, value)
    listing.updated_at = datetime.now(timezone.utc)

    _audit(db, "listing", listing.id, "updated", actor_id, old_data=old_data, new_data=updates)
    _commit(db, "listing update")
    db.refresh(listing)
    return listing
