from __future__ import annotations

# Standard library
import hashlib
import json
import logging
import re
import time
import uuid
from typing import Any

# Third-party
from fastapi import Depends, FastAPI, Header, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, generate_latest

from phonegate import __version__
from phonegate.adapters.phone import parse_phone
from phonegate.core.credentials import Credential
from phonegate.core.errors import AuthenticationError, PhonegateError, QuotaExceeded, RateLimited, ValidationError
from phonegate.core.events import INTERPRETED_EVENT_TYPES, SHAPE_WEBHOOK, normalize
from phonegate.core.plans import get_plan

from . import services
from .admin import router as admin_router
from .config import get_settings
from .models import (
    CreateOrderRequest,
    CreateOrderResponse,
    FreeKeyRequest,
    HealthResponse,
    IssuedKeyResponse,
    OtpCheckRequest,
    OtpCheckResponse,
    OtpSendRequest,
    OtpSendResponse,
    PhoneValidationResponse,
    SignupRequest,
)

logger = logging.getLogger("phonegate")

app = FastAPI(title="Phonegate API", default_response_class=ORJSONResponse)
app.include_router(admin_router)

_settings = get_settings()
_API_VERSION = _settings.api_version

# --- Security & Ops Middlewares (configurable via env) ---
if _settings.cors_allow_origins:
    origins = [o.strip() for o in _settings.cors_allow_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["POST", "GET", "OPTIONS"],
        allow_headers=["*"],
        max_age=600,
    )

REQUEST_ID_HEADER = "x-request-id"
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Prometheus metrics (guard against re-registration during test reloads)


def _counter(name: str, doc: str, labels: list[str]) -> Any:
    existing = REGISTRY._names_to_collectors.get(name)  # type: ignore[attr-defined]
    if existing is not None:
        return existing
    return Counter(name, doc, labels)


KEYS_ISSUED = _counter("phonegate_keys_issued_total", "Credentials issued or replayed", ["path", "result"])
PAYPAL_WEBHOOK_EVENTS = _counter("phonegate_paypal_webhook_events_total", "PayPal payment notifications", ["result"])
OTP_SENDS = _counter("phonegate_otp_sends_total", "OTP send requests", ["result"])
OTP_CHECKS = _counter("phonegate_otp_checks_total", "OTP check requests", ["result"])
LIMITER_DEGRADED = _counter(
    "phonegate_otp_limiter_degraded_total", "OTP limiter reads that failed (fail-open path)", ["scope"]
)


def _record_limiter_degraded(scope: str) -> None:
    LIMITER_DEGRADED.labels(scope=scope).inc()


services.on_limiter_degraded = _record_limiter_degraded


@app.exception_handler(PhonegateError)
async def phonegate_error_handler(request: Request, exc: PhonegateError):
    headers = {}
    if isinstance(exc, RateLimited) and exc.retry_after_seconds:
        headers["Retry-After"] = str(int(exc.retry_after_seconds))
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.kind, request.url.path, exc.message)
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.middleware("http")
async def body_size_guard(request: Request, call_next):
    limit = get_settings().max_body_bytes
    cl = request.headers.get("content-length")
    if cl and cl.isdigit():
        if int(cl) > limit:
            return ORJSONResponse(status_code=413, content={"detail": "payload too large"})
        return await call_next(request)
    body = await request.body()
    if len(body) > limit:
        return ORJSONResponse(status_code=413, content={"detail": "payload too large"})

    async def receive():
        return {"type": "http.request", "body": body, "more_body": False}

    request._receive = receive  # type: ignore[attr-defined]
    return await call_next(request)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    request.state.request_id = rid
    start = time.time()
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = rid
    if get_settings().json_logs:
        logger.info(
            json.dumps(
                {
                    "event": "access",
                    "method": request.method,
                    "path": request.url.path,
                    "status": response.status_code,
                    "duration_ms": round(1000.0 * (time.time() - start), 2),
                    "request_id": rid,
                }
            )
        )
    return response


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    resp = await call_next(request)
    resp.headers.setdefault("X-Content-Type-Options", "nosniff")
    resp.headers.setdefault("X-Frame-Options", "DENY")
    resp.headers.setdefault("Referrer-Policy", "no-referrer")
    resp.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    return resp


# ---------------- Per-IP Rate Limiting (in-memory, public endpoints only) -----------------
_ip_rl_counters: dict[str, dict[str, float]] = {}
IP_LIMITED_PATHS = {f"/{_API_VERSION}/test-validate"}


def _client_ip(request: Request, trust_xff: bool) -> str:
    if trust_xff:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            first = xff.split(",")[0].strip()
            if first:
                return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _prune_ip_counters(now: float, window: int) -> None:
    for ip in [k for k, rec in _ip_rl_counters.items() if now - rec["window_start"] >= window]:
        _ip_rl_counters.pop(ip, None)


@app.middleware("http")
async def per_ip_rate_limit_mw(request: Request, call_next):
    if request.url.path not in IP_LIMITED_PATHS:
        return await call_next(request)
    s = get_settings()
    limit, window = s.ip_rate_limit, s.ip_rate_window
    if limit <= 0:
        return await call_next(request)
    now = time.time()
    _prune_ip_counters(now, window)
    ip = _client_ip(request, s.trust_xff)
    rec = _ip_rl_counters.get(ip)
    if not rec or now - rec["window_start"] >= window:
        rec = {"window_start": now, "count": 0.0}
        _ip_rl_counters[ip] = rec
    if rec["count"] >= limit:
        reset_at = rec["window_start"] + window
        headers = {
            "Retry-After": str(int(reset_at - now) + 1),
            "X-IPLimit-Limit": str(limit),
            "X-IPLimit-Remaining": "0",
            "X-IPLimit-Reset": str(int(reset_at)),
        }
        return ORJSONResponse(
            status_code=429,
            content={"error": "rate_limited", "message": "Too many requests. Please try again later."},
            headers=headers,
        )
    rec["count"] += 1
    response = await call_next(request)
    response.headers.setdefault("X-IPLimit-Limit", str(limit))
    response.headers.setdefault("X-IPLimit-Remaining", str(max(limit - int(rec["count"]), 0)))
    response.headers.setdefault("X-IPLimit-Reset", str(int(rec["window_start"] + window)))
    return response


def api_key_guard(x_api_key: str | None = Header(default=None)) -> Credential:
    """Resolve the caller's credential from the ``x-api-key`` header."""
    if not x_api_key:
        raise AuthenticationError("API key is required. Include it in the x-api-key header.")
    cred = services.get_credential_store().get_by_key(x_api_key)
    if cred is None:
        raise AuthenticationError("Invalid API key")
    return cred


def _issued(issuance, path: str) -> IssuedKeyResponse:
    cred = issuance.credential
    KEYS_ISSUED.labels(path=path, result="replayed" if issuance.replayed else "created").inc()
    return IssuedKeyResponse(
        api_key=cred.key,
        plan=cred.plan,
        plan_name=cred.plan_name,
        requests_limit=cred.requests_limit,
        replayed=issuance.replayed,
    )


def _check_email(email: str) -> str:
    email = (email or "").strip()
    if not EMAIL_RE.match(email):
        raise ValidationError("Please provide a valid email address")
    return email


@app.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse(status="ok", version=__version__)


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


# ---------------- Payments -----------------


@app.post("/paypal/orders", response_model=CreateOrderResponse)
def create_order(req: CreateOrderRequest):
    email = _check_email(req.email)
    plan = req.plan.lower()
    if get_plan(plan) is None:
        raise ValidationError(f"unknown plan {req.plan!r}")
    order = services.get_paypal().create_order(
        req.name, email, plan=plan, amount=req.amount or get_settings().order_amount
    )
    approve = next((ln.get("href") for ln in order.get("links", []) if ln.get("rel") in {"approve", "payer-action"}), None)
    return CreateOrderResponse(id=order.get("id", ""), status=order.get("status"), approve_url=approve)


@app.post("/paypal/orders/{order_id}/capture")
def capture_order(order_id: str):
    return services.get_paypal().capture_order(order_id)


@app.post("/paypal/webhook")
async def paypal_webhook(request: Request):
    """Issue a credential for a paid order.

    Accepts a captured order document, a PayPal webhook envelope, or a
    ``{orderId, email, name, plan}`` object. Repeated deliveries for one
    order return the same key with ``replayed: true``.
    """
    body = await request.body()
    try:
        raw = json.loads(body or b"null")
    except ValueError as err:
        raise HTTPException(status_code=400, detail="invalid JSON payload") from err
    event = normalize(raw)
    log = services.get_webhook_log()
    record: dict[str, Any] = {
        "id": event.event_id or event.order_id or uuid.uuid4().hex,
        "ts": time.time(),
        "type": event.event_type,
        "shape": event.shape,
        "order_id": event.order_id,
        "payload_sha256": hashlib.sha256(body).hexdigest(),
        "verified_signature": None,
    }

    webhook_id = get_settings().paypal_webhook_id
    if webhook_id and event.shape == SHAPE_WEBHOOK:
        ok = await run_in_threadpool(
            services.get_paypal().verify_webhook_signature, webhook_id, dict(request.headers), raw
        )
        record["verified_signature"] = ok
        if not ok:
            record.update(result="bad_signature")
            log.add(record["id"], record)
            PAYPAL_WEBHOOK_EVENTS.labels(result="bad_signature").inc()
            raise HTTPException(status_code=400, detail="webhook signature verification failed")

    if event.shape == SHAPE_WEBHOOK and event.event_type not in INTERPRETED_EVENT_TYPES:
        record.update(result="ignored", note=f"event type {event.event_type} not handled")
        log.add(record["id"], record)
        PAYPAL_WEBHOOK_EVENTS.labels(result="ignored").inc()
        return {"received": True, "processed": False, "type": event.event_type}

    try:
        issuance = await run_in_threadpool(services.get_pipeline().process_event, event)
    except PhonegateError as e:
        record.update(result=e.kind, note=e.message)
        log.add(record["id"], record)
        PAYPAL_WEBHOOK_EVENTS.labels(result=e.kind).inc()
        raise
    record.update(result="replayed" if issuance.replayed else "issued", api_key=issuance.credential.key)
    log.add(record["id"], record)
    PAYPAL_WEBHOOK_EVENTS.labels(result=record["result"]).inc()
    return _issued(issuance, "paypal").model_dump()


# ---------------- Keys -----------------


@app.post(f"/{_API_VERSION}/keys/free", response_model=IssuedKeyResponse)
def free_key(req: FreeKeyRequest):
    email = _check_email(req.email)
    issuance = services.get_issuer().provision_free(email, req.name)
    return _issued(issuance, "free")


@app.post(f"/{_API_VERSION}/keys", response_model=IssuedKeyResponse)
def signup_key(req: SignupRequest):
    email = _check_email(req.email)
    issuance = services.get_issuer().provision_free(email, req.name)
    return _issued(issuance, "signup")


# ---------------- Phone validation -----------------


@app.get(f"/{_API_VERSION}/validate", response_model=PhoneValidationResponse)
def validate(phone: str | None = None, country: str | None = None, cred: Credential = Depends(api_key_guard)):
    if cred.requests_remaining <= 0:
        raise QuotaExceeded(
            f"Request limit reached for plan {cred.plan_name}. Upgrade your plan for more requests.",
            limit=cred.requests_limit,
        )
    if not phone:
        raise ValidationError("Missing required parameter: phone")
    info = parse_phone(phone, country=country, default_country=get_settings().default_country)
    services.get_credential_store().add_usage(cred.key, 1)
    return info.to_dict()


@app.get(f"/{_API_VERSION}/test-validate", response_model=PhoneValidationResponse)
def test_validate(number: str | None = None):
    if not number:
        raise ValidationError("Missing required parameter: number")
    return parse_phone(number, default_country=get_settings().default_country).to_dict()


# ---------------- OTP -----------------


@app.post(f"/{_API_VERSION}/otp/send", response_model=OtpSendResponse)
def otp_send(req: OtpSendRequest, cred: Credential = Depends(api_key_guard)):
    try:
        result = services.get_flow().send_code(req.phone, cred.key, channel=req.channel)
    except PhonegateError as e:
        OTP_SENDS.labels(result=e.kind).inc()
        raise
    OTP_SENDS.labels(result="sent").inc()
    return OtpSendResponse(status="pending", phone=result.phone, reference=result.reference)


@app.post(f"/{_API_VERSION}/otp/check", response_model=OtpCheckResponse)
def otp_check(req: OtpCheckRequest, cred: Credential = Depends(api_key_guard)):
    try:
        result = services.get_flow().check_code(req.phone, req.code, cred.key)
    except PhonegateError as e:
        OTP_CHECKS.labels(result=e.kind).inc()
        raise
    OTP_CHECKS.labels(result="approved" if result.verified else "denied").inc()
    return OtpCheckResponse(verified=result.verified, phone=result.phone)


# CLI entrypoint for uvicorn
# uvicorn cloud.app.main:app --reload --port 8000
