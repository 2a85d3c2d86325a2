"""Tests for the listing admission pipeline (service level, fake externals)."""

import pytest

from campus_market.models.audit_log import AuditLog
from campus_market.models.listing import Listing
from campus_market.services import listing_service
from campus_market.services.entitlement import VIA_GRANT, consume_quota, grant_next_listing, load_entitlement
from campus_market.services.errors import (
    InvalidInput,
    ModerationFlagged,
    ModerationServiceError,
    QuotaDenied,
    UploadFailed,
    UserNotFound,
)
from campus_market.services.listing_service import SellerIdentity, submit_listing

from conftest import CLEAN_GENERAL, IMAGE_DATA, FakeImageStore, identity_for

FIELDS = {
    "title": "Calculus Textbook",
    "description": "Thomas' Calculus, 14th edition, lightly highlighted.",
    "category": "Books",
    "price": 499.00,
}


def submit(db, user, image_store, gate, **overrides):
    fields = {**FIELDS, **overrides}
    return submit_listing(db, identity_for(user), fields, IMAGE_DATA, image_store, gate)


class TestValidation:
    @pytest.mark.parametrize("price", ["-5", 0, "abc", None, "nan", "inf", True])
    def test_bad_price_rejected_before_any_call(self, db, make_user, image_store, gate, sightengine, price):
        """A bad price fails before upload or moderation."""
        user = make_user()
        with pytest.raises(InvalidInput):
            submit(db, user, image_store, gate, price=price)
        assert image_store.uploads == []
        assert sightengine.calls == []

    @pytest.mark.parametrize("field", ["title", "description", "category"])
    def test_missing_field(self, db, make_user, image_store, gate, field):
        """A blank required field is rejected."""
        with pytest.raises(InvalidInput):
            submit(db, make_user(), image_store, gate, **{field: "  "})
        assert image_store.uploads == []

    def test_all_is_not_a_category(self, db, make_user, image_store, gate):
        """All is a feed filter, not a listing category."""
        with pytest.raises(InvalidInput):
            submit(db, make_user(), image_store, gate, category="All")

    def test_missing_image(self, db, make_user, image_store, gate):
        """A listing needs an image."""
        with pytest.raises(InvalidInput):
            submit_listing(db, identity_for(make_user()), FIELDS, None, image_store, gate)

    def test_price_string_is_parsed_and_rounded(self):
        """Price strings are trimmed and parsed."""
        assert listing_service.parse_price(" 12.50 ") == 12.5

    def test_overlong_title_rejected_before_upload(self, db, make_user, image_store, gate):
        """Titles longer than the column allows fail validation, not the insert."""
        with pytest.raises(InvalidInput):
            submit(db, make_user(), image_store, gate, title="x" * (listing_service.MAX_TITLE_LENGTH + 1))
        assert image_store.uploads == []

    def test_category_matching_is_case_insensitive(self):
        assert listing_service.normalize_category("electronics") == "Electronics"


class TestQuota:
    def test_first_listing_is_free(self, db, make_user, image_store, gate):
        """The first listing is admitted and snapshots the seller."""
        user = make_user()
        listing = submit(db, user, image_store, gate)

        assert listing.status == "active"
        assert listing.price == 499.0
        assert listing.seller_id == user.id
        assert listing.seller_email == user.email
        assert listing.image_url.startswith("https://res.cloudinary.test/")

        ent = load_entitlement(db, user.id)
        assert ent.has_used_free_listing
        assert ent.listings_count == 1

    def test_second_listing_denied_without_upload(self, db, make_user, image_store, gate):
        """A denied second listing uploads nothing and stores nothing."""
        user = make_user()
        submit(db, user, image_store, gate)
        uploads = len(image_store.uploads)

        with pytest.raises(QuotaDenied) as exc:
            submit(db, user, image_store, gate, title="Lab Coat")
        assert exc.value.redirect == "/payments"
        assert len(image_store.uploads) == uploads
        assert db.query(Listing).count() == 1

    def test_denied_user_makes_no_calls(self, db, make_user, image_store, gate, sightengine):
        """A user without quota never reaches the external services."""
        user = make_user(has_used_free_listing=True, listings_count=1)
        with pytest.raises(QuotaDenied):
            submit(db, user, image_store, gate)
        assert image_store.uploads == []
        assert sightengine.calls == []

    def test_grant_is_consumed_by_one_listing(self, db, make_user, image_store, gate):
        """One unlock, one more listing."""
        user = make_user()
        submit(db, user, image_store, gate)

        grant_next_listing(db, user.id)
        db.commit()
        submit(db, user, image_store, gate, title="Drafting Kit")

        ent = load_entitlement(db, user.id)
        assert not ent.can_list_next
        assert ent.listings_count == 2

        with pytest.raises(QuotaDenied):
            submit(db, user, image_store, gate, title="Scientific Calculator")

    def test_unknown_user_aborts_before_upload(self, db, image_store, gate):
        """A missing user aborts before the upload."""
        ghost = SellerIdentity(user_id="ghost", email="ghost@atharvacoe.ac.in", display_name="Ghost")
        with pytest.raises(UserNotFound):
            submit_listing(db, ghost, FIELDS, IMAGE_DATA, image_store, gate)
        assert image_store.uploads == []

    def test_concurrent_admission_cannot_reuse_grant(self, db, make_user, image_store, gate, sightengine):
        """Another request spends the grant while this one is being moderated."""
        user = make_user(has_used_free_listing=True, can_list_next=True, listings_count=1)

        def competing_admission():
            consume_quota(db, user.id, load_entitlement(db, user.id), VIA_GRANT)
            db.commit()

        sightengine.on_call = competing_admission

        with pytest.raises(QuotaDenied):
            submit(db, user, image_store, gate)

        assert db.query(Listing).count() == 0
        ent = load_entitlement(db, user.id)
        assert ent.listings_count == 2
        assert not ent.can_list_next

    def test_unlock_during_moderation_keeps_free_listing(self, db, make_user, image_store, gate, sightengine):
        """An unlock that lands mid-admission neither blocks nor spends the free listing."""
        user = make_user()

        def unlock():
            grant_next_listing(db, user.id)
            db.commit()

        sightengine.on_call = unlock

        listing = submit(db, user, image_store, gate)
        assert listing.status == "active"

        ent = load_entitlement(db, user.id)
        assert ent.has_used_free_listing
        assert ent.can_list_next
        assert ent.listings_count == 1

        entry = db.query(AuditLog).filter(AuditLog.entity_id == listing.id).one()
        assert '"authorized_by": "free"' in entry.new_data


class TestModeration:
    def test_nudity_rejected_at_general_stage(self, db, make_user, image_store, sightengine, hive, gate):
        """Nudity fails the general stage with a 422 and no quota spent."""
        user = make_user()
        sightengine.payload = {**CLEAN_GENERAL, "nudity": {"raw": 0.93, "partial": 0.1}}

        with pytest.raises(ModerationFlagged) as exc:
            submit(db, user, image_store, gate)
        assert exc.value.stage == "general"
        assert exc.value.status_code == 422
        assert hive.calls == []

        ent = load_entitlement(db, user.id)
        assert not ent.has_used_free_listing
        assert ent.listings_count == 0

    def test_vape_rejected_at_contraband_stage(self, db, make_user, image_store, hive, gate):
        """A vape fails the contraband stage and stores nothing."""
        hive.scores = {"vape": 0.62}
        with pytest.raises(ModerationFlagged) as exc:
            submit(db, make_user(), image_store, gate)
        assert exc.value.stage == "contraband"
        assert "vape" in exc.value.reason
        assert db.query(Listing).count() == 0

    def test_rejected_upload_is_kept_by_default(self, db, make_user, image_store, hive, gate):
        """Rejected uploads stay in the store unless cleanup is on."""
        hive.scores = {"beer": 0.9}
        with pytest.raises(ModerationFlagged):
            submit(db, make_user(), image_store, gate)
        assert len(image_store.uploads) == 1
        assert image_store.deleted == []

    def test_rejected_upload_cleanup_when_enabled(self, db, make_user, image_store, hive, gate, monkeypatch):
        """With cleanup on, a rejected upload is deleted."""
        monkeypatch.setattr(listing_service.settings, "CLEANUP_REJECTED_UPLOADS", True)
        hive.scores = {"beer": 0.9}
        with pytest.raises(ModerationFlagged):
            submit(db, make_user(), image_store, gate)
        assert image_store.deleted == ["marketplace_listings/1"]

    def test_service_error_is_terminal(self, db, make_user, image_store, sightengine, gate):
        """A classifier outage stops the admission without spending quota."""
        sightengine.error = True
        user = make_user()
        with pytest.raises(ModerationServiceError):
            submit(db, user, image_store, gate)
        assert load_entitlement(db, user.id).listings_count == 0


class TestUpload:
    def test_upload_failure(self, db, make_user, sightengine, gate):
        """A failed upload stops before moderation."""
        store = FakeImageStore(fail=True)
        user = make_user()
        with pytest.raises(UploadFailed):
            submit(db, user, store, gate)
        assert sightengine.calls == []
        assert not load_entitlement(db, user.id).has_used_free_listing


def test_admission_is_audited(db, make_user, image_store, gate):
    """An admission writes an audit entry naming what authorized it."""
    user = make_user()
    listing = submit(db, user, image_store, gate)
    entry = db.query(AuditLog).filter(AuditLog.entity_id == listing.id).one()
    assert entry.action == "created"
    assert entry.actor_id == user.id
    assert '"authorized_by": "free"' in entry.new_data
