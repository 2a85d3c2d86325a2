"""Campus assistant chat."""

from fastapi import APIRouter, Request

from campus_market.config import settings
from campus_market.middleware.rate_limit import limiter
from campus_market.schemas.chat import AskRequest, AskResponse
from campus_market.services.ai_client import ask_assistant

router = APIRouter(prefix="/api/ask", tags=["assistant"])


@router.post("", response_model=AskResponse)
@limiter.limit(settings.ASK_RATE_LIMIT)
async def ask(request: Request, req: AskRequest):
    return AskResponse(reply=await ask_assistant(req.message))
