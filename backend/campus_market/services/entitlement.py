"""Entitlement tracker — one free listing, then one listing per unlock.

The three counters on the user row are treated as one value. Reads go through
``load_entitlement``; writes go through a single conditional UPDATE guarded by
``entitlement_version`` so two concurrent admissions by the same user can
never both spend the same grant.
"""

import logging
from dataclasses import dataclass, replace
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from campus_market.config import settings
from campus_market.models.user import User
from campus_market.services.errors import QuotaDenied, UserNotFound

logger = logging.getLogger(__name__)

VIA_FREE = "free"
VIA_GRANT = "grant"

# Re-checks after a concurrent change before an admission is refused
CONSUME_ATTEMPTS = 3


@dataclass(frozen=True)
class Entitlement:
    has_used_free_listing: bool = False
    can_list_next: bool = False
    listings_count: int = 0
    version: int = 0

    @classmethod
    def from_user(cls, user: User) -> "Entitlement":
        return cls(
            has_used_free_listing=bool(user.has_used_free_listing),
            can_list_next=bool(user.can_list_next),
            listings_count=user.listings_count or 0,
            version=user.entitlement_version or 0,
        )

    def consumed(self, via: str) -> "Entitlement":
        """State after one admission authorized by ``via``."""
        return replace(
            self,
            has_used_free_listing=True,
            can_list_next=False if via == VIA_GRANT else self.can_list_next,
            listings_count=self.listings_count + 1,
            version=self.version + 1,
        )


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    via: Optional[str] = None  # free | grant
    redirect: Optional[str] = None


def check_quota(entitlement: Entitlement, redirect: Optional[str] = None) -> QuotaDecision:
    """Decide whether another listing may be admitted. No side effects.

    The free listing is spent before a grant, so a user holding both keeps
    the grant for their next listing.
    """
    if not entitlement.has_used_free_listing:
        return QuotaDecision(allowed=True, via=VIA_FREE)
    if entitlement.can_list_next:
        return QuotaDecision(allowed=True, via=VIA_GRANT)
    return QuotaDecision(allowed=False, redirect=redirect or settings.UPGRADE_REDIRECT)


def require_quota(entitlement: Entitlement) -> QuotaDecision:
    decision = check_quota(entitlement)
    if not decision.allowed:
        raise QuotaDenied(redirect=decision.redirect)
    return decision


def load_entitlement(db: Session, user_id: str) -> Entitlement:
    # populate_existing: the session may already hold this row from auth
    user = db.query(User).populate_existing().filter(User.id == user_id).first()
    if not user:
        raise UserNotFound()
    return Entitlement.from_user(user)


def _apply_admission(db: Session, user_id: str, observed: Entitlement, via: str) -> Optional[Entitlement]:
    new = observed.consumed(via)
    result = db.execute(
        update(User)
        .where(User.id == user_id, User.entitlement_version == observed.version)
        .values(
            has_used_free_listing=new.has_used_free_listing,
            can_list_next=new.can_list_next,
            listings_count=new.listings_count,
            entitlement_version=new.version,
        )
    )
    if result.rowcount != 1:
        return None
    return new


def consume_quota(db: Session, user_id: str, observed: Entitlement, via: str) -> Entitlement:
    """Apply one admission to the user's entitlement. Does not commit.

    ``observed`` must be the snapshot the quota decision was made on. If the
    row changed since then (another admission or a grant landed first) no
    row matches, and the caller must roll back.
    """
    new = _apply_admission(db, user_id, observed, via)
    if new is None:
        logger.warning("Entitlement for user %s changed during admission (version %s)", user_id, observed.version)
        raise QuotaDenied(redirect=settings.UPGRADE_REDIRECT)
    return new


def spend_quota(db: Session, user_id: str, observed: Entitlement,
                attempts: int = CONSUME_ATTEMPTS) -> QuotaDecision:
    """Charge one admission against the entitlement. Does not commit.

    Starts from ``observed``. When the row moved underneath it, the fresh
    row is re-checked and charged instead. Raises ``QuotaDenied`` when the
    fresh row denies the admission or the row moves ``attempts`` times.
    """
    for _ in range(attempts):
        decision = require_quota(observed)
        if _apply_admission(db, user_id, observed, decision.via) is not None:
            return decision
        logger.info("Entitlement for user %s changed during admission (version %s); re-checking",
                    user_id, observed.version)
        observed = load_entitlement(db, user_id)
    logger.warning("Entitlement for user %s kept changing; admission refused", user_id)
    raise QuotaDenied(redirect=settings.UPGRADE_REDIRECT)


def grant_next_listing(db: Session, user_id: str) -> bool:
    """Set ``can_list_next``. Does not commit.

    Returns True when the flag flipped, False when it was already set; a
    repeat grant leaves the row (and its version) untouched.
    """
    exists = db.query(User.id).filter(User.id == user_id).first()
    if not exists:
        raise UserNotFound()
    result = db.execute(
        update(User)
        .where(User.id == user_id, User.can_list_next.is_(False))
        .values(can_list_next=True, entitlement_version=User.entitlement_version + 1)
    )
    return result.rowcount == 1
