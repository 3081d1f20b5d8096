from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session

from ..audit import log
from ..db import get_db
from ..deps import bearer, get_current_user, get_session_store
from ..models import User
from ..rbac import user_context
from ..schemas import LoginIn, LoginOut, UserOut, VerifyOut
from ..security import create_token, decode_token
from ..services.users import authenticate, get_user_by_id
from ..session_store import SessionStore, new_session
from ..settings import settings

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login", response_model=LoginOut)
def login(
    payload: LoginIn,
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
):
    user = authenticate(db, payload.username.strip(), payload.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    rec = new_session(user.id, user_context(user).to_dict(), settings.SESSION_TTL_HOURS)
    store.put(rec)

    token = create_token(sub=user.id, session_id=rec.id, role=user.role)
    log(db, "LOGIN", actor=user, target_ref=user.id)
    return LoginOut(token=token, user=UserOut.model_validate(user), expires_at=rec.expires_at)


@router.post("/logout")
def logout(
    cred: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
):
    # sem token ou sessão já terminada -> resposta igual
    if cred is None or not cred.credentials:
        return {"success": True, "message": "Logged out"}
    try:
        payload = decode_token(cred.credentials)
    except JWTError:
        return {"success": True, "message": "Logged out"}

    sid = payload.get("sid")
    if sid:
        store.delete(sid)
        actor = get_user_by_id(db, payload.get("sub") or "")
        log(db, "LOGOUT", actor=actor, target_ref=actor.id if actor else None)
    return {"success": True, "message": "Logged out"}


@router.get("/verify", response_model=VerifyOut)
def verify(u: User = Depends(get_current_user)):
    return VerifyOut(valid=True, user=UserOut.model_validate(u))
