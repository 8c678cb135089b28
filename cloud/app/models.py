from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str


class CreateOrderRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    plan: str = "pro"
    amount: Optional[str] = None


class CreateOrderResponse(BaseModel):
    id: str
    status: Optional[str] = None
    approve_url: Optional[str] = None


class IssuedKeyResponse(BaseModel):
    api_key: str
    plan: str
    plan_name: str
    requests_limit: int
    replayed: bool = False


class FreeKeyRequest(BaseModel):
    email: str
    name: Optional[str] = None


class SignupRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str
    # paid plans are only issued for verified PayPal orders
    plan: Literal["free"] = "free"


class PhoneValidationResponse(BaseModel):
    valid: bool
    number: str
    country: str
    type: str


class OtpSendRequest(BaseModel):
    phone: str
    channel: Literal["sms", "call"] = "sms"


class OtpSendResponse(BaseModel):
    status: str = "pending"
    phone: str
    reference: str


class OtpCheckRequest(BaseModel):
    phone: str
    code: str


class OtpCheckResponse(BaseModel):
    verified: bool
    phone: str


class AdminKeyResponse(BaseModel):
    api_key: str
    plan: str
    plan_name: str
    requests_limit: int
    requests_used: int
    source_kind: str
    source_identity: str
    email: Optional[str] = None
    created_at: Optional[float] = None
    paid_at: Optional[float] = None


class AdminPlanUpdate(BaseModel):
    plan: str
