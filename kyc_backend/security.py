import time
from typing import Any, Dict, Optional

from jose import jwt
from passlib.context import CryptContext

from .settings import settings

# hashing sem bcrypt para evitar conflitos de build
pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(p: str) -> str:
    return pwd.hash(p)


def verify_password(p: str, hashed: str) -> bool:
    return pwd.verify(p, hashed)


def create_token(
    sub: str,
    session_id: str,
    role: Optional[str] = None,
    hours: Optional[int] = None,
) -> str:
    now = int(time.time())
    exp = now + int(hours if hours is not None else settings.JWT_ACCESS_HOURS) * 60 * 60

    payload: Dict[str, Any] = {
        "sub": sub,
        "sid": session_id,
        "type": "access",
        "iat": now,
        "exp": exp,
    }
    if role is not None:
        payload["role"] = role

    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
