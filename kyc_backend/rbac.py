# kyc_backend/rbac.py
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .models import UserRole

WRITE_PERMISSIONS = frozenset({"write", "admin"})


def normalize_role(role) -> UserRole | None:
    """
    Aceita:
      - UserRole
      - string "club_owner" / "CLUB_OWNER" / " Club_Owner "
    Devolve UserRole ou None se inválido.
    """
    if role is None:
        return None

    if isinstance(role, UserRole):
        return role

    if isinstance(role, str):
        role_norm = role.strip().lower()
        try:
            return UserRole(role_norm)
        except ValueError:
            return None

    return None


def _scope_id(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


@dataclass(frozen=True)
class UserContext:
    """Contexto de autorização de um pedido (imutável)."""

    role: Optional[UserRole]
    union_id: Optional[str] = None
    region_id: Optional[str] = None
    club_id: Optional[str] = None
    manager_id: Optional[str] = None
    permissions: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}), hash=False)

    @classmethod
    def build(
        cls,
        role,
        union_id=None,
        region_id=None,
        club_id=None,
        manager_id=None,
        permissions: Mapping[str, str] | None = None,
    ) -> "UserContext":
        return cls(
            role=normalize_role(role),
            union_id=_scope_id(union_id),
            region_id=_scope_id(region_id),
            club_id=_scope_id(club_id),
            manager_id=_scope_id(manager_id),
            permissions=MappingProxyType(dict(permissions or {})),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value if self.role else None,
            "union_id": self.union_id,
            "region_id": self.region_id,
            "club_id": self.club_id,
            "manager_id": self.manager_id,
            "permissions": dict(self.permissions),
        }

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def user_context(u) -> UserContext:
    """Converte um User (ORM) num UserContext."""
    return UserContext.build(
        getattr(u, "role", None),
        union_id=getattr(u, "union_id", None),
        region_id=getattr(u, "region_id", None),
        club_id=getattr(u, "club_id", None),
        manager_id=getattr(u, "manager_id", None),
        permissions=getattr(u, "permissions", None),
    )


def has_write_permission(user: UserContext | None, entity_type: str, entity_id) -> bool:
    if user is None or user.role is None:
        return False
    if user.is_admin:
        return True
    return user.permissions.get(f"{entity_type}_{entity_id}") in WRITE_PERMISSIONS
