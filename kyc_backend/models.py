from __future__ import annotations

import enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from .db import Base
from .utils import utcnow


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    UNION_HEAD = "union_head"
    REGIONAL_HEAD = "regional_head"
    CLUB_OWNER = "club_owner"
    SA_MANAGER = "sa_manager"
    SUPER_AGENT = "super_agent"
    AGENT = "agent"
    PLAYER = "player"


class KycStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    UNDER_REVIEW = "under_review"


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    username = Column(String, nullable=False, unique=True, index=True)
    email = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)

    # string livre: o papel é normalizado em rbac.normalize_role (desconhecido -> sem acesso)
    role = Column(String, nullable=False, default=UserRole.PLAYER.value)

    union_id = Column(String, nullable=True)
    region_id = Column(String, nullable=True)
    club_id = Column(String, nullable=True)
    manager_id = Column(String, nullable=True)
    permissions = Column(JSON, nullable=False, default=dict)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)


class AuthSession(Base):
    __tablename__ = "auth_sessions"

    id = Column(String, primary_key=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    context = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)


class KycSubmission(Base):
    __tablename__ = "kyc_submissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    submission_id = Column(String(36), nullable=False, unique=True, index=True)

    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    country = Column(String(100), nullable=True)
    postal_code = Column(String(20), nullable=True)
    poker_platform = Column(String(100), nullable=True)
    player_id = Column(String(255), nullable=True)

    driver_license_file_path = Column(String(500), nullable=True)
    verification_video_path = Column(String(500), nullable=True)

    ip_address = Column(String(45), nullable=True)
    device_fingerprint = Column(Text, nullable=True)
    geolocation_data = Column(JSON, nullable=True)
    device_specs = Column(JSON, nullable=True)

    # relatório do SecurityAnalyzer (RiskReport serializado)
    risk_report = Column(JSON, nullable=True)

    status = Column(String(20), nullable=False, default=KycStatus.PENDING.value, index=True)
    verification_notes = Column(Text, nullable=True)
    verified_by = Column(String(255), nullable=True)
    verified_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    device = relationship(
        "KycDeviceData",
        back_populates="submission",
        uselist=False,
        cascade="all, delete-orphan",
    )


class KycDeviceData(Base):
    __tablename__ = "kyc_device_data"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kyc_submission_id = Column(
        Integer, ForeignKey("kyc_submissions.id", ondelete="CASCADE"), nullable=False, index=True
    )

    device_id = Column(String(255), nullable=True, index=True)
    browser_info = Column(JSON, nullable=True)
    screen_resolution = Column(String(50), nullable=True)
    timezone = Column(String(100), nullable=True)
    language = Column(String(10), nullable=True)
    platform = Column(String(100), nullable=True)
    user_agent = Column(Text, nullable=True)
    canvas_fingerprint = Column(Text, nullable=True)
    webgl_fingerprint = Column(Text, nullable=True)
    audio_fingerprint = Column(Text, nullable=True)
    fonts = Column(JSON, nullable=True)
    plugins = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow)

    submission = relationship("KycSubmission", back_populates="device")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True)
    action = Column(String, nullable=False)

    actor_id = Column(String, nullable=True)
    actor_name = Column(String, nullable=False, default="Unknown")

    target_ref = Column(String, nullable=True)
    meta = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow)
