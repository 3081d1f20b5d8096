# kyc_backend/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .services.security_analysis import RiskReport


# ---------------- AUTH ----------------
class LoginIn(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: Optional[str] = None
    role: str
    union_id: Optional[str] = None
    region_id: Optional[str] = None
    club_id: Optional[str] = None
    manager_id: Optional[str] = None


class LoginOut(BaseModel):
    success: bool = True
    token: str
    user: UserOut
    expires_at: datetime


class VerifyOut(BaseModel):
    valid: bool
    user: Optional[UserOut] = None


# ---------------- KYC ----------------
class KycSubmitOut(BaseModel):
    success: bool = True
    message: str
    submissionId: str


class KycStatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    submission_id: str
    full_name: str
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    verification_notes: Optional[str] = None
    verified_at: Optional[datetime] = None


class KycListItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    submission_id: str
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    poker_platform: Optional[str] = None
    player_id: Optional[str] = None
    status: str
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    totalPages: int


class KycListOut(BaseModel):
    success: bool = True
    data: List[KycListItem]
    pagination: Pagination


class DeviceDataOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    device_id: Optional[str] = None
    browser_info: Optional[Dict[str, Any]] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    platform: Optional[str] = None
    user_agent: Optional[str] = None
    canvas_fingerprint: Optional[str] = None
    webgl_fingerprint: Optional[str] = None
    audio_fingerprint: Optional[str] = None
    fonts: Optional[List[Any]] = None
    plugins: Optional[List[Any]] = None


class KycDetail(KycListItem):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    device_fingerprint: Optional[str] = None
    geolocation_data: Optional[Dict[str, Any]] = None
    device_specs: Optional[Dict[str, Any]] = None
    has_driver_license: bool = False
    has_verification_video: bool = False
    verification_notes: Optional[str] = None
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    risk_report: Optional[RiskReport] = None
    device: Optional[DeviceDataOut] = None


class KycDetailOut(BaseModel):
    success: bool = True
    data: KycDetail


class KycStatusUpdateIn(BaseModel):
    # frontend antigo envia verificationNotes
    status: str
    verification_notes: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("verification_notes", "verificationNotes")
    )


# ---------------- REPORTS ----------------
class ReportPagination(BaseModel):
    total: int
    page: int
    limit: int


class ReportOut(BaseModel):
    success: bool = True
    filter: str
    data: List[Dict[str, Any]]
    pagination: ReportPagination
