# kyc_backend/session_store.py
"""
Sessões de login.

A interface é pequena (get/put/delete/expire) para poder trocar o backend:
- InMemorySessionStore: testes / dev
- DbSessionStore: tabela auth_sessions (produção)

Sem timers: sessões expiradas são removidas no `get` (lazy) ou por `expire()`.
"""
from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional, Protocol

from sqlalchemy.orm import Session

from .models import AuthSession
from .utils import utcnow


@dataclass
class SessionRecord:
    id: str
    user_id: str
    context: Dict[str, Any]
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


class SessionStore(Protocol):
    def get(self, session_id: str) -> Optional[SessionRecord]: ...

    def put(self, record: SessionRecord) -> None: ...

    def delete(self, session_id: str) -> None: ...

    def expire(self, now: Optional[datetime] = None) -> int: ...


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def new_session(user_id: str, context: Dict[str, Any], ttl_hours: int) -> SessionRecord:
    now = utcnow()
    return SessionRecord(
        id=new_session_id(),
        user_id=user_id,
        context=context,
        created_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
    )


class InMemorySessionStore:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._sessions: Dict[str, SessionRecord] = {}

    def get(self, session_id: str) -> Optional[SessionRecord]:
        rec = self._sessions.get(session_id)
        if rec is None:
            return None
        if rec.is_expired(self._clock()):
            self._sessions.pop(session_id, None)
            return None
        return rec

    def put(self, record: SessionRecord) -> None:
        self._sessions[record.id] = record

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def expire(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        dead = [sid for sid, rec in self._sessions.items() if rec.is_expired(now)]
        for sid in dead:
            del self._sessions[sid]
        return len(dead)

    def __len__(self) -> int:
        return len(self._sessions)


class DbSessionStore:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self._clock = clock

    def get(self, session_id: str) -> Optional[SessionRecord]:
        row = self.db.get(AuthSession, session_id)
        if row is None:
            return None
        rec = SessionRecord(
            id=row.id,
            user_id=row.user_id,
            context=row.context or {},
            created_at=row.created_at,
            expires_at=row.expires_at,
        )
        if rec.is_expired(self._clock()):
            self.delete(session_id)
            return None
        return rec

    def put(self, record: SessionRecord) -> None:
        self.db.merge(
            AuthSession(
                id=record.id,
                user_id=record.user_id,
                context=record.context,
                created_at=record.created_at,
                expires_at=record.expires_at,
            )
        )
        self.db.commit()

    def delete(self, session_id: str) -> None:
        self.db.query(AuthSession).filter(AuthSession.id == session_id).delete()
        self.db.commit()

    def expire(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        n = self.db.query(AuthSession).filter(AuthSession.expires_at <= now).delete()
        self.db.commit()
        return int(n or 0)
