"""Image store — Cloudinary upload API over signed form posts."""

import hashlib
import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

import httpx

from campus_market.config import settings
from campus_market.services.errors import UploadFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredImage:
    secure_url: str
    public_id: Optional[str] = None


def sign_params(params: dict, api_secret: str) -> str:
    """Cloudinary request signature: sha1 of sorted ``k=v`` pairs + secret."""
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
    return hashlib.sha1((to_sign + api_secret).encode("utf-8")).hexdigest()


class CloudinaryImageStore:
    """Uploads base64 data URIs (or remote URLs) and returns their public URL.

    Uploads are retried up to ``max_attempts`` times on transport errors and
    5xx answers. A 4xx answer is final.
    """

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "marketplace_listings",
        max_attempts: int = 2,
        timeout_seconds: float = 30.0,
        retry_delay_seconds: float = 0.5,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self.base_url = f"https://api.cloudinary.com/v1_1/{cloud_name}/image"
        self._client = httpx.Client(timeout=httpx.Timeout(timeout_seconds), transport=transport)

    def _signed(self, params: dict) -> dict:
        params = {**params, "timestamp": int(time.time())}
        params["signature"] = sign_params(params, self.api_secret)
        params["api_key"] = self.api_key
        return params

    def upload(self, image_data: str) -> StoredImage:
        last_error: Optional[str] = None
        for attempt in range(1, self.max_attempts + 1):
            form = self._signed({"folder": self.folder})
            form["file"] = image_data
            try:
                resp = self._client.post(f"{self.base_url}/upload", data=form)
            except httpx.HTTPError as e:
                last_error = str(e)
            else:
                if resp.status_code < 300:
                    try:
                        body = resp.json()
                        return StoredImage(secure_url=body["secure_url"], public_id=body.get("public_id"))
                    except (ValueError, KeyError) as e:
                        logger.error("Cloudinary upload returned an unusable body: %s", e)
                        raise UploadFailed() from e
                last_error = f"HTTP {resp.status_code}"
                if resp.status_code < 500:
                    break

            if attempt < self.max_attempts:
                logger.warning("Cloudinary upload attempt %d failed (%s), retrying", attempt, last_error)
                time.sleep(self.retry_delay_seconds * attempt)

        logger.error("Cloudinary upload failed: %s", last_error)
        raise UploadFailed()

    def delete(self, public_id: str) -> bool:
        """Best-effort removal. Returns False instead of raising."""
        try:
            resp = self._client.post(f"{self.base_url}/destroy", data=self._signed({"public_id": public_id}))
            resp.raise_for_status()
            return resp.json().get("result") == "ok"
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Could not delete image %s: %s", public_id, e)
            return False

    def close(self) -> None:
        self._client.close()


def build_image_store() -> CloudinaryImageStore:
    return CloudinaryImageStore(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
        folder=settings.CLOUDINARY_FOLDER,
        max_attempts=settings.IMAGE_UPLOAD_MAX_ATTEMPTS,
        timeout_seconds=settings.IMAGE_UPLOAD_TIMEOUT_SECONDS,
    )


@lru_cache
def get_image_store() -> CloudinaryImageStore:
    """FastAPI dependency; tests override it with a fake."""
    return build_image_store()
