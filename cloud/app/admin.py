from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException

from phonegate.core.credentials import Credential

from . import services
from .config import get_settings
from .models import AdminKeyResponse, AdminPlanUpdate

router = APIRouter()


def _admin_guard(x_admin_secret: str | None = Header(default=None)):
    required = get_settings().admin_secret
    if not required:
        raise HTTPException(status_code=503, detail="admin secret not configured")
    if x_admin_secret != required:
        raise HTTPException(status_code=401, detail="invalid admin secret")
    return True


def _key_response(cred: Credential) -> AdminKeyResponse:
    return AdminKeyResponse(
        api_key=cred.key,
        plan=cred.plan,
        plan_name=cred.plan_name,
        requests_limit=cred.requests_limit,
        requests_used=cred.requests_used,
        source_kind=cred.source_kind,
        source_identity=cred.source_identity,
        email=cred.email,
        created_at=cred.created_at,
        paid_at=cred.paid_at,
    )


@router.get("/admin/keys/{api_key}", response_model=AdminKeyResponse)
def admin_get_key(api_key: str, auth=Depends(_admin_guard)):
    cred = services.get_credential_store().get_by_key(api_key)
    if cred is None:
        raise HTTPException(status_code=404, detail="key not found")
    return _key_response(cred)


@router.put("/admin/keys/{api_key}/plan", response_model=AdminKeyResponse)
def admin_change_plan(api_key: str, payload: AdminPlanUpdate, auth=Depends(_admin_guard)):
    cred = services.get_issuer().change_plan(api_key, payload.plan)
    if cred is None:
        raise HTTPException(status_code=404, detail="key not found")
    return _key_response(cred)


@router.get("/admin/webhook/events")
def admin_list_webhook_events(limit: int = 50, auth=Depends(_admin_guard)):
    lim = max(1, min(limit, 500))
    log = services.get_webhook_log()
    events = log.recent(lim)
    return {"events": events, "count": len(log), "returned": len(events)}


@router.post("/admin/otp/expire")
def admin_expire_otp_attempts(phone: str | None = None, auth=Depends(_admin_guard)):
    """Mark ``sent`` attempts older than the limiter window as ``expired``."""
    window = get_settings().otp_window_seconds
    changed = services.get_tracker().expire_stale(window, phone=phone)
    return {"expired": changed, "older_than_seconds": window}
