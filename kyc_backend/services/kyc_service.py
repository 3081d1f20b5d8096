"""
KYC Service - validação de uploads, gravação de submissões e gestão de estado
"""
from __future__ import annotations

import json
import logging
import os
import secrets
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from fastapi import Request, UploadFile
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..audit import log
from ..models import KycDeviceData, KycStatus, KycSubmission
from ..settings import settings
from ..utils import utcnow
from .security_analysis import GeoLocation, RiskReport, SubmissionRiskInput

logger = logging.getLogger(__name__)

VALID_STATUSES = {s.value for s in KycStatus}
ALLOWED_MIME_PREFIXES = ("image/", "video/")
CHUNK_SIZE = 1024 * 1024


class UploadRejected(ValueError):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class KycForm(BaseModel):
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    poker_platform: Optional[str] = None
    player_id: Optional[str] = None
    device_fingerprint: Optional[str] = None
    geolocation: Optional[Dict[str, Any]] = None
    device_specs: Optional[Dict[str, Any]] = None

    def risk_input(self, ip_address: Optional[str]) -> SubmissionRiskInput:
        geo = None
        if isinstance(self.geolocation, dict):
            geo = GeoLocation(
                city=_str_or_none(self.geolocation.get("city")),
                country=_str_or_none(self.geolocation.get("country")),
            )
        return SubmissionRiskInput(ip_address=ip_address or "", country=self.country, geolocation=geo)


def _str_or_none(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


# -------------------------
# Parsing do pedido
# -------------------------
def parse_json_field(raw: Optional[str], name: str) -> Optional[Dict[str, Any]]:
    """Campos JSON do formulário: inválido -> None (registado, não bloqueia a submissão)."""
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning(f"Ignoring malformed JSON field '{name}': {e}")
        return None
    if not isinstance(value, dict):
        logger.warning(f"Ignoring JSON field '{name}': expected an object")
        return None
    return value


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


# -------------------------
# Uploads
# -------------------------
def upload_dir() -> Path:
    d = Path(settings.UPLOAD_DIR) / "kyc"
    d.mkdir(parents=True, exist_ok=True)
    return d


def save_upload(upload: Optional[UploadFile], field_name: str) -> Optional[str]:
    """Grava o ficheiro em UPLOAD_DIR/kyc e devolve o caminho (None se não enviado)."""
    if upload is None or not upload.filename:
        return None

    content_type = (upload.content_type or "").lower()
    if not content_type.startswith(ALLOWED_MIME_PREFIXES):
        raise UploadRejected("Only image and video files are allowed!")

    max_bytes = settings.MAX_UPLOAD_MB * 1024 * 1024
    ext = os.path.splitext(upload.filename)[1].lower()
    target = upload_dir() / f"{field_name}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"

    written = 0
    try:
        with open(target, "wb") as f:
            while True:
                chunk = upload.file.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise UploadRejected(f"File too large (max {settings.MAX_UPLOAD_MB}MB)", status_code=413)
                f.write(chunk)
    except UploadRejected:
        target.unlink(missing_ok=True)
        raise

    return str(target)


def discard_files(*paths: Optional[str]) -> None:
    for p in paths:
        if p:
            Path(p).unlink(missing_ok=True)


# -------------------------
# Persistência
# -------------------------
def create_submission(
    db: Session,
    form: KycForm,
    ip_address: Optional[str],
    driver_license_path: Optional[str],
    verification_video_path: Optional[str],
    report: Optional[RiskReport],
) -> KycSubmission:
    sub = KycSubmission(
        submission_id=str(uuid.uuid4()),
        full_name=form.full_name,
        email=form.email,
        phone=form.phone,
        address=form.address,
        city=form.city,
        state=form.state,
        country=form.country,
        postal_code=form.postal_code,
        poker_platform=form.poker_platform,
        player_id=form.player_id,
        driver_license_file_path=driver_license_path,
        verification_video_path=verification_video_path,
        ip_address=ip_address,
        device_fingerprint=form.device_fingerprint,
        geolocation_data=form.geolocation,
        device_specs=form.device_specs,
        risk_report=report.model_dump() if report else None,
        status=KycStatus.PENDING.value,
    )

    specs = form.device_specs
    if specs:
        sub.device = KycDeviceData(
            device_id=_str_or_none(specs.get("deviceId")),
            browser_info=specs.get("browserInfo") or {},
            screen_resolution=_str_or_none(specs.get("screenResolution")),
            timezone=_str_or_none(specs.get("timezone")),
            language=_str_or_none(specs.get("language")),
            platform=_str_or_none(specs.get("platform")),
            user_agent=_str_or_none(specs.get("userAgent")),
            canvas_fingerprint=_str_or_none(specs.get("canvasFingerprint")),
            webgl_fingerprint=_str_or_none(specs.get("webglFingerprint")),
            audio_fingerprint=_str_or_none(specs.get("audioFingerprint")),
            fonts=specs.get("fonts") or [],
            plugins=specs.get("plugins") or [],
        )

    db.add(sub)
    db.commit()
    db.refresh(sub)
    return sub


def get_by_submission_id(db: Session, submission_id: str) -> Optional[KycSubmission]:
    return db.scalar(select(KycSubmission).where(KycSubmission.submission_id == submission_id))


def list_submissions(
    db: Session, status: Optional[str], page: int, limit: int
) -> Tuple[list[KycSubmission], int]:
    q = select(KycSubmission)
    count_q = select(func.count(KycSubmission.id))
    if status:
        q = q.where(KycSubmission.status == status)
        count_q = count_q.where(KycSubmission.status == status)

    rows = db.scalars(
        q.order_by(KycSubmission.created_at.desc(), KycSubmission.id.desc()).limit(limit).offset((page - 1) * limit)
    ).all()
    total = db.scalar(count_q) or 0
    return list(rows), int(total)


def update_status(
    db: Session,
    kyc_id: int,
    status: str,
    notes: Optional[str],
    verified_by: str,
) -> Optional[KycSubmission]:
    if status not in VALID_STATUSES:
        raise ValueError("Invalid status value")

    sub = db.get(KycSubmission, kyc_id)
    if not sub:
        return None

    sub.status = status
    sub.verification_notes = notes
    sub.verified_by = verified_by
    sub.verified_at = utcnow()
    db.add(sub)
    db.commit()
    db.refresh(sub)
    return sub


def submission_snapshot(sub: KycSubmission) -> Dict[str, Any]:
    """Dados planos para as notificações (não dependem da sessão SQLAlchemy)."""
    return {
        "id": sub.id,
        "submission_id": sub.submission_id,
        "full_name": sub.full_name,
        "email": sub.email,
        "phone": sub.phone,
        "address": sub.address,
        "city": sub.city,
        "state": sub.state,
        "country": sub.country,
        "postal_code": sub.postal_code,
        "player_id": sub.player_id,
        "ip_address": sub.ip_address,
        "device_fingerprint": sub.device_fingerprint,
        "geolocation": sub.geolocation_data,
        "device": sub.device_specs or {},
        "files": [p for p in (sub.driver_license_file_path, sub.verification_video_path) if p],
        "created_at": sub.created_at,
    }


def store_submission(
    db: Session,
    form: KycForm,
    ip_address: Optional[str],
    driver_license_path: Optional[str],
    verification_video_path: Optional[str],
    report: RiskReport,
) -> Dict[str, Any]:
    """Grava submissão + auditoria e devolve o snapshot para as notificações (síncrono)."""
    sub = create_submission(db, form, ip_address, driver_license_path, verification_video_path, report)
    logger.info(
        f"KYC submission {sub.submission_id} stored (fraud_score={report.fraud_score}, risk={report.fraud_risk})"
    )
    snapshot = submission_snapshot(sub)
    # a submissão já está gravada: uma falha na auditoria não a pode desfazer
    try:
        log(db, "KYC_SUBMITTED", target_ref=sub.submission_id, meta={"ip": ip_address, "fraud_score": report.fraud_score})
    except Exception:
        db.rollback()
        logger.exception(f"Audit log failed for KYC submission {sub.submission_id}")
    return snapshot
