"""Payment request/response schemas."""

from pydantic import BaseModel

from campus_market.schemas.auth import EntitlementResponse


class UnlockResponse(BaseModel):
    message: str
    entitlement: EntitlementResponse
