"""Shared fixtures: in-memory database, fake external services, API client."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from campus_market.database import Base, get_db
from campus_market.main import app
from campus_market.middleware.auth import create_access_token, hash_password
from campus_market.middleware.rate_limit import limiter
from campus_market.models.user import User
from campus_market.services.errors import ModerationServiceError, UploadFailed
from campus_market.services.image_store import StoredImage, get_image_store
from campus_market.services.listing_service import SellerIdentity
from campus_market.services.moderation import ModerationGate, get_moderation_gate

CLEAN_GENERAL = {
    "status": "success",
    "nudity": {"raw": 0.01, "partial": 0.02},
    "offensive": {"prob": 0.01},
    "scam": {"prob": 0.01},
    "drugs": {"prob": 0.01},
    "gore": {"prob": 0.01},
    "violence": {"prob": 0.01},
    "weapon": 0.01,
    "weapon_firearm": 0.01,
}

IMAGE_DATA = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="


class FakeImageStore:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: list[str] = []
        self.deleted: list[str] = []

    def upload(self, image_data: str) -> StoredImage:
        self.uploads.append(image_data)
        if self.fail:
            raise UploadFailed()
        n = len(self.uploads)
        return StoredImage(
            secure_url=f"https://res.cloudinary.test/marketplace_listings/{n}.png",
            public_id=f"marketplace_listings/{n}",
        )

    def delete(self, public_id: str) -> bool:
        self.deleted.append(public_id)
        return True


class FakeSightengine:
    def __init__(self, payload: dict = None, error: bool = False):
        self.payload = payload or CLEAN_GENERAL
        self.error = error
        self.calls: list[str] = []
        self.on_call = None

    def check(self, image_url: str) -> dict:
        self.calls.append(image_url)
        if self.on_call:
            self.on_call()
        if self.error:
            raise ModerationServiceError("general")
        return self.payload


class FakeHive:
    def __init__(self, scores: dict = None, error: bool = False):
        self.scores = scores or {"general_safe": 0.99}
        self.error = error
        self.calls: list[str] = []

    def moderate(self, image_url: str) -> dict:
        self.calls.append(image_url)
        if self.error:
            raise ModerationServiceError("contraband")
        return self.scores


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(**entitlement) -> User:
        counter["n"] += 1
        user = User(
            email=f"student{counter['n']}@atharvacoe.ac.in",
            password_hash=hash_password("campus-pass-1"),
            display_name=f"Student {counter['n']}",
            **entitlement,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


def identity_for(user: User) -> SellerIdentity:
    return SellerIdentity(user_id=user.id, email=user.email, display_name=user.display_name)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def image_store():
    return FakeImageStore()


@pytest.fixture
def sightengine():
    return FakeSightengine()


@pytest.fixture
def hive():
    return FakeHive()


@pytest.fixture
def gate(sightengine, hive):
    return ModerationGate(general=sightengine, contraband=hive)


@pytest.fixture
def client(session_factory, image_store, gate):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_image_store] = lambda: image_store
    app.dependency_overrides[get_moderation_gate] = lambda: gate
    limiter.reset()

    yield TestClient(app)

    app.dependency_overrides.clear()
