# kyc_backend/access_filter.py
"""
Filtros de acesso por papel para as queries de relatórios (clubes, membros,
settlements).

Regras:
- O predicado depende apenas do UserContext (e das opções explícitas do caller).
- Valores de igualdade / LIKE vão SEMPRE como parâmetros ("?"), nunca no SQL.
- LIMIT/OFFSET e ORDER BY não são parametrizáveis: só entram no SQL depois de
  validados contra allow-lists (QueryValidationError caso contrário).
- Papel desconhecido ou papel com âmbito sem o respectivo id -> predicado
  impossível (1=0). Não é erro: o caller devolve zero linhas.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Literal, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field, field_validator
from sqlalchemy import text
from sqlalchemy.sql.elements import TextClause

from .models import UserRole
from .rbac import UserContext

MAX_PAGE_SIZE = 100
SORT_DIRECTIONS = ("ASC", "DESC")


class QueryValidationError(ValueError):
    """Paginação / ordenação fora da allow-list (erro do caller)."""


# -------------------------
# Predicado
# -------------------------
@dataclass(frozen=True)
class Constraint:
    column: str
    operator: str
    value: Any

    def render(self) -> str:
        return f"{self.column} {self.operator} ?"


@dataclass(frozen=True)
class AccessPredicate:
    constraints: tuple[Constraint, ...] = ()
    unsatisfiable: bool = False

    @classmethod
    def allow_all(cls) -> "AccessPredicate":
        return cls()

    @classmethod
    def deny_all(cls) -> "AccessPredicate":
        return cls(unsatisfiable=True)

    @classmethod
    def equals(cls, column: str, value: Any) -> "AccessPredicate":
        return cls(constraints=(Constraint(column, "=", value),))

    @property
    def is_unrestricted(self) -> bool:
        return not self.unsatisfiable and not self.constraints

    @property
    def where_clause(self) -> str:
        """Fragmento a concatenar num template com `WHERE 1=1`."""
        if self.unsatisfiable:
            return " AND 1=0"
        return "".join(f" AND {c.render()}" for c in self.constraints)

    @property
    def params(self) -> list[Any]:
        if self.unsatisfiable:
            return []
        return [c.value for c in self.constraints]


# -------------------------
# Tabelas de política (papel -> (atributo do contexto, coluna))
# None = sem filtro (admin)
# -------------------------
_UNION = ("union_id", "Union_ID")
_REGION = ("region_id", "Region_ID")
_CLUB = ("club_id", "Club_ID")

_CLUB_POLICY: dict[UserRole, Optional[tuple[str, str]]] = {
    UserRole.ADMIN: None,
    UserRole.UNION_HEAD: _UNION,
    UserRole.REGIONAL_HEAD: _REGION,
    UserRole.CLUB_OWNER: _CLUB,
    UserRole.SA_MANAGER: _CLUB,
    UserRole.SUPER_AGENT: _CLUB,
    UserRole.AGENT: _CLUB,
    UserRole.PLAYER: _CLUB,
}

# Tabelas sem Club_ID (agregados por região): papéis de clube filtram por região
_REGION_POLICY: dict[UserRole, Optional[tuple[str, str]]] = {
    UserRole.ADMIN: None,
    UserRole.UNION_HEAD: _UNION,
    UserRole.REGIONAL_HEAD: _REGION,
    UserRole.CLUB_OWNER: _REGION,
    UserRole.SA_MANAGER: _REGION,
    UserRole.SUPER_AGENT: _REGION,
    UserRole.AGENT: _REGION,
    UserRole.PLAYER: _REGION,
}

for _policy in (_CLUB_POLICY, _REGION_POLICY):
    _missing = set(UserRole) - set(_policy)
    if _missing:
        raise RuntimeError(f"access policy missing roles: {sorted(r.value for r in _missing)}")


def _apply_policy(
    policy: dict[UserRole, Optional[tuple[str, str]]],
    user: UserContext | None,
    column_overrides: dict[str, str] | None = None,
) -> AccessPredicate:
    if user is None or user.role is None:
        return AccessPredicate.deny_all()

    rule = policy[user.role]
    if rule is None:
        return AccessPredicate.allow_all()

    attr, column = rule
    column = (column_overrides or {}).get(column, column)
    scope_id = getattr(user, attr)
    if not scope_id:
        return AccessPredicate.deny_all()
    return AccessPredicate.equals(column, scope_id)


def build_filter(user: UserContext | None, *, club_column: str = "Club_ID") -> AccessPredicate:
    """
    Predicado de visibilidade para tabelas com Club_ID.
    `club_column` permite tabelas em que o id do clube tem outro nome (ex.: `GG Club`.ID).
    """
    overrides = {"Club_ID": club_column} if club_column != "Club_ID" else None
    return _apply_policy(_CLUB_POLICY, user, overrides)


def build_region_filter(user: UserContext | None) -> AccessPredicate:
    """Variante para tabelas sem Club_ID: papéis de clube passam a filtrar por Region_ID."""
    return _apply_policy(_REGION_POLICY, user)


def describe_filter(user: UserContext | None) -> str:
    if user is None:
        return "No user - no data access"
    if user.role is None:
        return "No access"
    if user.role == UserRole.ADMIN:
        return "Admin access - showing all data"
    if user.role == UserRole.UNION_HEAD:
        return f"Filtered by Union ID: {user.union_id}" if user.union_id else "No union access"
    if user.role == UserRole.REGIONAL_HEAD:
        return f"Filtered by Region ID: {user.region_id}" if user.region_id else "No region access"
    if user.role == UserRole.SA_MANAGER and user.manager_id and user.club_id:
        return f"Filtered by Club ID: {user.club_id} (manager {user.manager_id})"
    return f"Filtered by Club ID: {user.club_id}" if user.club_id else "No club access"


# -------------------------
# Opções de query (vindas do querystring)
# -------------------------
class QueryOptions(BaseModel):
    search: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=MAX_PAGE_SIZE)
    sort_by: Optional[str] = None
    sort_order: Literal["ASC", "DESC"] = "ASC"

    # filtros explícitos por id
    club_id: Optional[str] = None
    region_id: Optional[str] = None

    @field_validator("sort_order", mode="before")
    @classmethod
    def _upper_order(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @field_validator("search", "sort_by", "club_id", "region_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


# -------------------------
# Construtor de queries
# -------------------------
class ReportQuery:
    """
    Acumula um SELECT ... WHERE 1=1 com parâmetros posicionais ("?").
    `to_text()` converte para bind params nomeados do SQLAlchemy.
    """

    def __init__(self, base_sql: str):
        self._sql = base_sql.rstrip()
        self._params: list[Any] = []
        self._order = ""
        self._page = ""
        self.predicate: AccessPredicate = AccessPredicate.allow_all()

    def where_equals(self, column: str, value: Any) -> "ReportQuery":
        if value is None or value == "":
            return self
        self._sql += f" AND {column} = ?"
        self._params.append(value)
        return self

    def search(self, term: Optional[str], columns: Sequence[str]) -> "ReportQuery":
        if not term or not columns:
            return self
        like = f"%{term}%"
        self._sql += " AND (" + " OR ".join(f"{c} LIKE ?" for c in columns) + ")"
        self._params.extend([like] * len(columns))
        return self

    def restrict(self, predicate: AccessPredicate) -> "ReportQuery":
        self.predicate = predicate
        self._sql += predicate.where_clause
        self._params.extend(predicate.params)
        return self

    def order_by(
        self,
        column: Optional[str],
        direction: str = "ASC",
        allowed: Union[Mapping[str, str], Iterable[str]] = (),
    ) -> "ReportQuery":
        """`allowed` mapeia o nome público para a expressão SQL; uma lista vale como identidade."""
        if not column:
            return self
        if not isinstance(allowed, Mapping):
            allowed = {c: c for c in allowed}
        expr = allowed.get(column)
        if expr is None:
            raise QueryValidationError(f"sort column not allowed: {column!r}")
        direction = (direction or "ASC").strip().upper()
        if direction not in SORT_DIRECTIONS:
            raise QueryValidationError(f"sort direction must be ASC or DESC, got {direction!r}")
        self._order = f" ORDER BY {expr} {direction}"
        return self

    def paginate(self, page: Any, limit: Any) -> "ReportQuery":
        page = _as_int("page", page)
        limit = _as_int("limit", limit)
        if page < 1:
            raise QueryValidationError("page must be >= 1")
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise QueryValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        self._page = f" LIMIT {limit} OFFSET {(page - 1) * limit}"
        return self

    def compile(self) -> tuple[str, list[Any]]:
        return self._sql + self._order + self._page, list(self._params)

    def compile_count(self) -> tuple[str, list[Any]]:
        return f"SELECT COUNT(*) AS total FROM ({self._sql}) AS scoped", list(self._params)

    def to_text(self) -> tuple[TextClause, dict[str, Any]]:
        return _named(*self.compile())

    def count_text(self) -> tuple[TextClause, dict[str, Any]]:
        return _named(*self.compile_count())


def _as_int(name: str, v: Any) -> int:
    if isinstance(v, bool):
        raise QueryValidationError(f"{name} must be an integer")
    if isinstance(v, int):
        return v
    if isinstance(v, str) and v.strip().isdigit():
        return int(v.strip())
    raise QueryValidationError(f"{name} must be an integer")


def _named(sql: str, params: list[Any]) -> tuple[TextClause, dict[str, Any]]:
    parts = sql.split("?")
    if len(parts) - 1 != len(params):
        raise QueryValidationError("placeholder / parameter count mismatch")
    out = parts[0]
    for i, chunk in enumerate(parts[1:]):
        out += f":p{i}" + chunk
    return text(out), {f"p{i}": v for i, v in enumerate(params)}


# -------------------------
# Queries de relatórios
# -------------------------
_SETTLEMENT_COLUMNS = """
      Region_ID,
      Region_Name,
      Union_ID,
      Union_Name,
      `Start Date` AS Start_Date,
      `End Date` AS End_Date,
      bbjp_fee,
      bbjp_payouts,
      eco_earnings,
      eco_percentage,
      eco_tax_rebate,
      leaderboard_reward,
      net_settlement,
      other_adj,
      total_ev_cashout,
      total_hands,
      total_players,
      tournament_eco_earnings,
      tournament_eco_percentage,
      tournament_eco_tax_rebate,
      tournament_fee,
      tournament_winnings,
      union_fee,
      union_fee_percentage,
      union_tournament_fee,
      win_ratio,
      total_winnings,
      total_fee"""

# nome público (alias devolvido pela API) -> expressão de coluna
SETTLEMENT_SORT_COLUMNS: Mapping[str, str] = {
    "Region_ID": "Region_ID",
    "Region_Name": "Region_Name",
    "Union_ID": "Union_ID",
    "Start_Date": "`Start Date`",
    "End_Date": "`End Date`",
    "net_settlement": "net_settlement",
    "total_hands": "total_hands",
    "total_players": "total_players",
    "total_winnings": "total_winnings",
    "total_fee": "total_fee",
}
CLUB_SETTLEMENT_SORT_COLUMNS: Mapping[str, str] = {
    **SETTLEMENT_SORT_COLUMNS,
    "Club_ID": "Club_ID",
    "Club_Name": "Club_Name",
}
CLUB_SORT_COLUMNS: Mapping[str, str] = {
    c: c for c in ("ID", "Name", "Region_ID", "Region_Name", "Union_ID", "Fee", "Eco")
}
MEMBER_SORT_COLUMNS: Mapping[str, str] = {
    "ID": "ID",
    "Nickname": "Nickname",
    "Club_ID": "Club_ID",
    "Region_ID": "Region_ID",
    "Role": "Role",
    "Agent_Nickname": "Agent_Nickname",
    "Manager_Nickname": "Manager_Nickname",
    "Last_Active": "`Last Active`",
    "Country": "Country",
}

CLUB_SEARCH_COLUMNS = ("Name", "Region_Name")
MEMBER_SEARCH_COLUMNS = ("Nickname", "Agent_Nickname", "Manager_Nickname")


def _finish(q: ReportQuery, options: QueryOptions, sort_columns: Mapping[str, str]) -> ReportQuery:
    return q.order_by(options.sort_by, options.sort_order, sort_columns).paginate(options.page, options.limit)


def build_settlement_query(user: UserContext | None, options: QueryOptions | None = None) -> ReportQuery:
    options = options or QueryOptions()
    q = ReportQuery(f"SELECT {_SETTLEMENT_COLUMNS}\n    FROM `GG Settle Region`\n    WHERE 1=1")
    q.where_equals("Region_ID", options.region_id)
    q.restrict(build_region_filter(user))
    return _finish(q, options, SETTLEMENT_SORT_COLUMNS)


def build_club_settlement_query(user: UserContext | None, options: QueryOptions | None = None) -> ReportQuery:
    options = options or QueryOptions()
    q = ReportQuery(
        f"SELECT {_SETTLEMENT_COLUMNS},\n      Club_ID,\n      Club_Name\n    FROM `GG Settle Club`\n    WHERE 1=1"
    )
    q.where_equals("Club_ID", options.club_id)
    q.where_equals("Region_ID", options.region_id)
    q.restrict(build_filter(user))
    return _finish(q, options, CLUB_SETTLEMENT_SORT_COLUMNS)


def build_club_query(user: UserContext | None, options: QueryOptions | None = None) -> ReportQuery:
    options = options or QueryOptions()
    q = ReportQuery(
        """SELECT
      ID,
      Name,
      Region_ID,
      Region_Name,
      Union_ID,
      Union_Name,
      Fee,
      fee_type,
      Eco,
      eco_type,
      eco_earnings_type,
      BBJ,
      ECode_flag,
      MTT_Fee,
      MTT_Eco,
      net_settlement_type
    FROM `GG Club`
    WHERE 1=1"""
    )
    q.where_equals("ID", options.club_id)
    q.where_equals("Region_ID", options.region_id)
    q.search(options.search, CLUB_SEARCH_COLUMNS)
    # `GG Club` guarda o id do clube em ID
    q.restrict(build_filter(user, club_column="ID"))
    return _finish(q, options, CLUB_SORT_COLUMNS)


def build_member_query(user: UserContext | None, options: QueryOptions | None = None) -> ReportQuery:
    options = options or QueryOptions()
    q = ReportQuery(
        """SELECT
      ID AS Member_ID,
      Nickname,
      Club_ID,
      Club_Name,
      Region_ID,
      Region_Name,
      Union_ID,
      Union_Name,
      Role,
      Agent_ID,
      Agent_Nickname,
      Manager_ID,
      Manager_Nickname,
      `Super Agent_ID` AS Super_Agent_ID,
      `Super Agent_Nickname` AS Super_Agent_Nickname,
      `Last Active` AS Last_Active,
      Country
    FROM `GG Member`
    WHERE 1=1"""
    )
    q.where_equals("Club_ID", options.club_id)
    q.search(options.search, MEMBER_SEARCH_COLUMNS)
    q.restrict(build_filter(user))
    return _finish(q, options, MEMBER_SORT_COLUMNS)
