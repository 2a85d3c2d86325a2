"""Error taxonomy for the listing core.

Every failure a caller can see is one of these. External-call failures are
translated into them at the adapter boundary, so raw transport errors never
reach a router. ``main.py`` renders them as ``{"error": message, **extra}``.
"""

from typing import Optional


class MarketError(Exception):
    """Base class. ``message`` is safe to show to end users."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "Internal Server Error", **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, **self.extra}


class InvalidInput(MarketError):
    status_code = 400
    code = "invalid_input"


class Unauthenticated(MarketError):
    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class QuotaDenied(MarketError):
    """The user has no listing entitlement left; send them to the upgrade step."""

    status_code = 402
    code = "quota_denied"

    def __init__(self, redirect: str, message: str = "You have used your free listing. Unlock another listing to continue."):
        super().__init__(message, redirect=redirect)
        self.redirect = redirect


class OwnershipViolation(MarketError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "You do not own this listing"):
        super().__init__(message)


class NotFound(MarketError):
    status_code = 404
    code = "not_found"


class UserNotFound(NotFound):
    def __init__(self, message: str = "User not found"):
        super().__init__(message)


class ModerationFlagged(MarketError):
    """Image ran through a classifier successfully and was rejected on its merits."""

    code = "moderation_flagged"

    def __init__(self, stage: str, reason: str, signals: Optional[list[str]] = None):
        super().__init__(
            f"Image rejected by content moderation: {reason}",
            stage=stage,
            reason=reason,
        )
        self.stage = stage
        self.reason = reason
        self.signals = signals or []
        # The contraband classifier answers 409; the general one 422.
        self.status_code = 409 if stage == "contraband" else 422


class ModerationServiceError(MarketError):
    """A classifier was unreachable or answered with an unusable payload."""

    code = "moderation_unavailable"

    def __init__(self, stage: str):
        super().__init__("Image could not be verified right now. Please try again later.", stage=stage)
        self.stage = stage


class UploadFailed(MarketError):
    code = "upload_failed"

    def __init__(self, message: str = "Image upload failed"):
        super().__init__(message)


class PersistenceFailure(MarketError):
    code = "persistence_failure"
