"""CampusKart — FastAPI Application Entry Point."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from campus_market.config import settings
from campus_market.database import init_db
from campus_market.middleware.rate_limit import limiter
from campus_market.routers import ask, auth, dashboard, listings, payments, sell
from campus_market.services.ai_client import ai_provider_name
from campus_market.services.errors import InvalidInput, MarketError

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("campus_market")

_cors_origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]

app = FastAPI(
    title="CampusKart",
    description="Campus-only peer-to-peer marketplace.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


async def _market_error_handler(request: Request, exc: MarketError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.add_exception_handler(MarketError, _market_error_handler)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed bodies get the same 400 shape as service-side validation
    errors = exc.errors()
    loc = errors[0].get("loc", ()) if errors else ()
    field = next((str(p) for p in loc if p != "body"), "")
    message = f"Invalid field: {field}" if field else "Invalid request body"
    return JSONResponse(status_code=400, content=InvalidInput(message).to_dict())


app.add_exception_handler(RequestValidationError, _validation_error_handler)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(auth.router)
app.include_router(sell.router)
app.include_router(listings.router)
app.include_router(dashboard.router)
app.include_router(payments.router)
app.include_router(ask.router)


@app.on_event("startup")
def on_startup():
    """Create tables and report which assistant provider is active."""
    init_db()
    logger.info("Assistant provider: %s", ai_provider_name())


@app.get("/")
def root():
    return {
        "name": "CampusKart API",
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
def health():
    return {"status": "ok", "ai_provider": ai_provider_name()}
