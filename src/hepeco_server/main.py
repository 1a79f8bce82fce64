import hashlib
import hmac
import logging
import logging.config
import secrets
from collections import Counter
from datetime import datetime, timezone
from typing import Optional, Union

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from hepeco_server.config import settings
from hepeco_server.errors import AuthenticationError, PaymentError
from hepeco_server.gateway import HttpGatewayClient, PaymentGatewayClient, SimulatedGatewayClient
from hepeco_server.models import (
    GeneratedPayment,
    GeneratePaymentRequest,
    MobileMoneyNotification,
    PaymentListing,
    PaymentLookup,
    Quote,
    QuoteLead,
    QuoteLeadCreate,
    QuoteListing,
    QuoteSaved,
    VerificationOutcome,
    VerifyPaymentRequest,
)
from hepeco_server.payments import PaymentLifecycle
from hepeco_server.quotes import compute_quote, parse_timeline
from hepeco_server.store import InMemoryQuoteStore, QuoteStore


# -----------------------------
# Logging
# -----------------------------
LOG_LEVEL = "INFO" if settings.ENVIRONMENT == "production" else "DEBUG"

logging_config = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
        },
    },
    "loggers": {
        "uvicorn": {"handlers": ["console"], "level": LOG_LEVEL},
        "uvicorn.error": {"handlers": ["console"], "level": LOG_LEVEL},
        "uvicorn.access": {"handlers": ["console"], "level": LOG_LEVEL},
        "hepeco": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

logging.config.dictConfig(logging_config)
logger = logging.getLogger("hepeco")


# -----------------------------
# App & rate limiting
# -----------------------------
app = FastAPI(
    title=settings.PROJECT_NAME,
    version="2.0.0",
    description="""
Backend for the Hepeco Digital website: quote calculator, quote leads and a
mock mobile-money payment flow.

- **Payments** move `pending → verified | failed | fraud_suspected`
- **Rate limited** payment generation with SlowAPI
- Payment references expire after one hour
    """.strip(),
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter


def build_gateway() -> PaymentGatewayClient:
    if settings.GATEWAY_MODE == "http":
        return HttpGatewayClient(
            settings.GATEWAY_URL,
            timeout=settings.GATEWAY_TIMEOUT,
            max_retries=settings.GATEWAY_MAX_RETRIES,
            max_rps=settings.GATEWAY_MAX_RPS,
        )
    return SimulatedGatewayClient(
        success_rate=settings.SIMULATED_SUCCESS_RATE,
        delay=settings.SIMULATED_DELAY_SECONDS,
    )


app.state.lifecycle = PaymentLifecycle.from_settings(settings, gateway=build_gateway())
app.state.quotes = InMemoryQuoteStore()


def get_lifecycle(request: Request) -> PaymentLifecycle:
    return request.app.state.lifecycle


def get_quote_store(request: Request) -> QuoteStore:
    return request.app.state.quotes


def require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    if not settings.ADMIN_TOKEN:
        raise AuthenticationError("Admin access is not configured")
    if not x_admin_token or not hmac.compare_digest(x_admin_token.encode(), settings.ADMIN_TOKEN.encode()):
        logger.warning("Rejected admin request with bad token")
        raise AuthenticationError("Invalid admin token")


# -----------------------------
# Error handlers
# -----------------------------
@app.exception_handler(RateLimitExceeded)
async def rl_handler(request: Request, exc: RateLimitExceeded):
    # Return Retry-After so clients can be polite
    return JSONResponse(
        status_code=429,
        content={"success": False, "error": "rate_limited", "message": "rate limit exceeded"},
        headers={"Retry-After": "1"},
    )


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    headers = {"Retry-After": "1"} if exc.status_code == 429 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ())[1:]) or "body"
        problems.append(f"{field}: {error.get('msg')}")
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "validation_error", "message": "; ".join(problems)},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "internal_error", "message": "Internal server error"},
    )


def _now_z() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# -----------------------------
# Routes
# -----------------------------
@app.get("/api/health", summary="Health check", tags=["meta"])
async def health():
    return {"status": "healthy", "service": settings.PROJECT_NAME, "timestamp": _now_z()}


@app.get(
    "/api/quote/calculate",
    response_model=Quote,
    summary="Price a service for a delivery timeline",
    tags=["quotes"],
)
async def calculate_quote(service: str, timeline: Union[int, str] = 14):
    return compute_quote(service, parse_timeline(timeline))


@app.post(
    "/api/quote/save",
    response_model=QuoteSaved,
    summary="Store a quote request",
    tags=["quotes"],
    responses={400: {"description": "Missing name, phone or service"}},
)
async def save_quote(body: QuoteLeadCreate, quotes: QuoteStore = Depends(get_quote_store)):
    timeline_days = parse_timeline(body.timeline)
    quote_id = f"QUO{secrets.token_hex(6).upper()}"
    lead = QuoteLead(
        id=quote_id,
        name=body.name.strip(),
        phone=body.phone.strip(),
        email=body.email.strip(),
        service=body.service,
        timeline_days=timeline_days,
        budget=body.budget,
        message=body.message,
        created_at=datetime.now(timezone.utc),
        estimated_price=compute_quote(body.service, timeline_days).total,
    )
    quotes.put(lead)
    logger.info(f"Quote {quote_id} saved for {lead.service} ({timeline_days} days)")
    return QuoteSaved(quote_id=quote_id, quote=lead)


@app.post(
    "/api/payment/generate",
    response_model=GeneratedPayment,
    summary="Create a payment reference and QR payload",
    tags=["payments"],
    responses={
        400: {"description": "Invalid amount, phone, method or session"},
        429: {"description": "Duplicate request or rate limit exceeded"},
    },
)
@limiter.limit(settings.GENERATE_RATE_LIMIT)
async def generate_payment(
    request: Request,
    body: GeneratePaymentRequest,
    lifecycle: PaymentLifecycle = Depends(get_lifecycle),
):
    return await lifecycle.generate(body.amount, body.phone, body.method, body.session_id)


@app.post(
    "/api/payment/verify",
    response_model=VerificationOutcome,
    summary="Verify a payment reference",
    tags=["payments"],
    responses={
        403: {"description": "Session mismatch or payment flagged for review"},
        404: {"description": "Unknown reference"},
        410: {"description": "Reference expired"},
    },
)
async def verify_payment(body: VerifyPaymentRequest, lifecycle: PaymentLifecycle = Depends(get_lifecycle)):
    """Resolve a pending payment.

    Notes:
    - `success: false` with HTTP 200 means the money has not arrived yet; retry later.
    - Verifying an already verified payment returns the same invoice again.
    """
    return await lifecycle.verify(body.reference, body.session_id, phone=body.phone)


@app.get(
    "/api/payment/{reference}",
    response_model=PaymentLookup,
    summary="Look up a payment",
    tags=["payments"],
    responses={404: {"description": "Unknown reference"}},
)
async def get_payment(reference: str, lifecycle: PaymentLifecycle = Depends(get_lifecycle)):
    return PaymentLookup(payment=lifecycle.get(reference))


@app.post("/api/webhook/mobile-money", summary="Mobile-money provider notification", tags=["payments"])
async def mobile_money_webhook(request: Request, lifecycle: PaymentLifecycle = Depends(get_lifecycle)):
    body = await request.body()
    signature = request.headers.get("x-signature")

    if not settings.WEBHOOK_SECRET:
        raise AuthenticationError("Webhook signing is not configured")
    expected = hmac.new(settings.WEBHOOK_SECRET.encode(), body, hashlib.sha512).hexdigest()
    if not signature or not hmac.compare_digest(expected, signature):
        logger.warning("Invalid mobile-money webhook signature")
        raise AuthenticationError("Invalid signature")

    try:
        notification = MobileMoneyNotification.model_validate_json(body)
    except SchemaValidationError:
        logger.error("Invalid mobile-money webhook payload")
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "validation_error", "message": "Invalid payload"},
        )

    payment = await lifecycle.apply_notification(
        notification.reference, notification.status, notification.transaction_id
    )
    if payment is None:
        return {"received": True, "status": "ignored"}
    return {"received": True, "status": payment.status.value}


@app.get(
    "/api/admin/payments",
    response_model=PaymentListing,
    summary="List all payments",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)
async def admin_payments(lifecycle: PaymentLifecycle = Depends(get_lifecycle)):
    payments = lifecycle.list_payments()
    return PaymentListing(count=len(payments), summary=lifecycle.summary(), payments=payments)


@app.get(
    "/api/admin/quotes",
    response_model=QuoteListing,
    summary="List all quote requests",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)
async def admin_quotes(quotes: QuoteStore = Depends(get_quote_store)):
    leads = sorted(quotes.list_all(), key=lambda q: q.created_at)
    by_service = Counter(q.service for q in leads)
    return QuoteListing(count=len(leads), by_service=dict(by_service), quotes=leads)


# -----------------------------
# Run:
# hepeco-server
# Swagger UI: http://127.0.0.1:8000/docs
# -----------------------------
