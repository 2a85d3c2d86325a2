"""Tests for the Cloudinary image store adapter."""

from urllib.parse import parse_qs

import httpx
import pytest

from campus_market.services.errors import UploadFailed
from campus_market.services.image_store import CloudinaryImageStore, sign_params


def make_store(handler, max_attempts=2) -> CloudinaryImageStore:
    return CloudinaryImageStore(
        cloud_name="demo",
        api_key="key",
        api_secret="secret",
        max_attempts=max_attempts,
        retry_delay_seconds=0,
        transport=httpx.MockTransport(handler),
    )


def test_signature_ignores_empty_values():
    """Empty parameters are left out of the signature."""
    assert sign_params({"folder": "f", "timestamp": 1, "x": ""}, "s") == sign_params({"timestamp": 1, "folder": "f"}, "s")


def test_upload_posts_signed_form():
    """Upload posts a signed form to the cloud's upload endpoint."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(200, json={"secure_url": "https://res.cloudinary.com/demo/a.png", "public_id": "marketplace_listings/a"})

    stored = make_store(handler).upload("data:image/png;base64,AAAA")

    assert stored.secure_url == "https://res.cloudinary.com/demo/a.png"
    assert stored.public_id == "marketplace_listings/a"
    assert seen["path"] == "/v1_1/demo/image/upload"
    assert seen["form"]["folder"] == ["marketplace_listings"]
    assert seen["form"]["api_key"] == ["key"]
    assert "signature" in seen["form"]


def test_upload_retries_server_errors():
    """A 5xx is retried once."""
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            return httpx.Response(502)
        return httpx.Response(200, json={"secure_url": "https://res.cloudinary.com/demo/b.png"})

    assert make_store(handler).upload("data:x").secure_url.endswith("b.png")
    assert len(attempts) == 2


def test_client_errors_are_not_retried():
    """A 4xx fails without a retry."""
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(400, json={"error": {"message": "Invalid image file"}})

    with pytest.raises(UploadFailed):
        make_store(handler, max_attempts=3).upload("data:x")
    assert len(attempts) == 1


def test_transport_errors_exhaust_attempts():
    """Transport errors are retried up to the attempt limit."""
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(UploadFailed):
        make_store(handler, max_attempts=2).upload("data:x")
    assert len(attempts) == 2


def test_delete_is_best_effort():
    """A failed delete returns False instead of raising."""
    store = make_store(lambda r: httpx.Response(500))
    assert store.delete("marketplace_listings/a") is False
