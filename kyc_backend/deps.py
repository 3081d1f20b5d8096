from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .db import get_db
from .models import User
from .rbac import UserContext, user_context
from .security import decode_token
from .services.security_analysis import SecurityAnalyzer, security_analyzer
from .session_store import DbSessionStore, SessionRecord, SessionStore

bearer = HTTPBearer(auto_error=False)


def get_security_analyzer() -> SecurityAnalyzer:
    return security_analyzer


def get_session_store(db: Session = Depends(get_db)) -> SessionStore:
    return DbSessionStore(db)


def get_current_session(
    cred: HTTPAuthorizationCredentials | None = Depends(bearer),
    store: SessionStore = Depends(get_session_store),
) -> SessionRecord:
    if cred is None or not cred.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access denied. No token provided.")
    try:
        payload = decode_token(cred.credentials)
    except Exception:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    if payload.get("type") != "access":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token type")

    rec = store.get(payload.get("sid") or "")
    if rec is None or rec.user_id != payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")
    return rec


def get_current_user(
    rec: SessionRecord = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> User:
    u = db.get(User, rec.user_id)
    if not u or not u.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User disabled")
    return u


def get_user_context(u: User = Depends(get_current_user)) -> UserContext:
    return user_context(u)


def require_admin(u: User = Depends(get_current_user)) -> User:
    if not user_context(u).is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied. Admin role required.")
    return u
