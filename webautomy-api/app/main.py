from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.logging_config import get_logger, setup_logging
from app.models import Channel, Message, Organization
from app.routers import onboarding, send_message, webhook
from app.services.errors import RelayError
from app.services.rate_limit_service import RATE_LIMIT_MESSAGE, RedisRateLimiter

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="WebAutomy Relay",
    description="WhatsApp Business messaging relay with prepaid per-message billing",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

RATE_LIMIT_EXEMPT_PATHS = {"/webhook", "/health", "/db-check"}

rate_limiter = RedisRateLimiter.from_settings(settings)


def _client_key(request: Request, trusted_proxy_hops: int = 0) -> str:
    """Client address for rate limiting.

    X-Forwarded-For is read only when proxies are trusted, and then from the
    right: each trusted hop appends the address it received the request from,
    so entries left of that are whatever the client chose to send.
    """
    if trusted_proxy_hops > 0:
        forwarded = [
            part.strip() for part in request.headers.get("x-forwarded-for", "").split(",") if part.strip()
        ]
        if forwarded:
            return forwarded[-min(trusted_proxy_hops, len(forwarded))]
    return request.client.host if request.client else "unknown"


@app.middleware("http")
async def rate_limit(request: Request, call_next):
    if request.method == "OPTIONS" or request.url.path in RATE_LIMIT_EXEMPT_PATHS:
        return await call_next(request)
    decision = await rate_limiter.hit(_client_key(request, settings.trusted_proxy_hops))
    if not decision.allowed:
        logger.warning("Rate limit exceeded", extra={"context": {"path": request.url.path}})
        return JSONResponse(
            {"error": RATE_LIMIT_MESSAGE},
            status_code=429,
            headers={"Retry-After": str(decision.retry_after)},
        )
    return await call_next(request)


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    if exc.status_code >= 500:
        logger.error(
            exc.message,
            extra={"context": {"path": request.url.path, "code": exc.code, "detail": exc.detail}},
        )
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"error": "Invalid request body"}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled error",
        exc_info=exc,
        extra={"context": {"path": request.url.path}},
    )
    return JSONResponse({"error": "Internal server error"}, status_code=500)


app.include_router(webhook.router)
app.include_router(send_message.router)
app.include_router(onboarding.router)


@app.get("/")
async def root():
    return {"service": "WebAutomy Relay", "status": "running"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "organizations": db.query(Organization).count(),
        "channels": db.query(Channel).count(),
        "messages": db.query(Message).count(),
    }
