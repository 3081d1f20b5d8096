import uuid

from sqlalchemy.orm import Session

from .models import AuditLog


def log(db: Session, action: str, actor=None, target_ref: str | None = None, meta: dict | None = None):
    """Registo de auditoria (login/logout, submissões, decisões KYC)."""
    rec = AuditLog(
        id=str(uuid.uuid4()),
        action=action,
        actor_id=getattr(actor, "id", None) if actor else None,
        actor_name=getattr(actor, "username", "Unknown") if actor else "Unknown",
        target_ref=target_ref,
        meta=meta or {},
    )
    db.add(rec)
    db.commit()
