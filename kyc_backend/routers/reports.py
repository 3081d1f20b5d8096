import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..access_filter import (
    QueryOptions,
    QueryValidationError,
    ReportQuery,
    build_club_query,
    build_club_settlement_query,
    build_member_query,
    build_settlement_query,
    describe_filter,
)
from ..db import get_db
from ..deps import get_user_context
from ..rbac import UserContext
from ..schemas import ReportOut, ReportPagination

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["reports"])


def query_options(
    search: Optional[str] = Query(None),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
    club_id: Optional[str] = Query(None, alias="clubId"),
    region_id: Optional[str] = Query(None, alias="regionId"),
) -> QueryOptions:
    raw = {
        "search": search,
        "page": page,
        "limit": limit,
        "sort_by": sort_by,
        "sort_order": sort_order,
        "club_id": club_id,
        "region_id": region_id,
    }
    try:
        return QueryOptions(**{k: v for k, v in raw.items() if v is not None})
    except ValidationError as e:
        fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise HTTPException(status_code=400, detail=f"Invalid query options: {fields}")


def _run(
    db: Session,
    user: UserContext,
    options: QueryOptions,
    builder: Callable[[UserContext, QueryOptions], ReportQuery],
) -> ReportOut:
    try:
        q = builder(user, options)
    except QueryValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    filter_desc = describe_filter(user)
    pagination = ReportPagination(total=0, page=options.page, limit=options.limit)

    # sem âmbito -> nada a consultar
    if q.predicate.unsatisfiable:
        logger.info(f"Report {builder.__name__} short-circuited: {filter_desc}")
        return ReportOut(filter=filter_desc, data=[], pagination=pagination)

    sql, params = q.to_text()
    count_sql, count_params = q.count_text()
    rows = db.execute(sql, params).mappings().all()
    total = db.execute(count_sql, count_params).scalar() or 0

    pagination.total = int(total)
    return ReportOut(filter=filter_desc, data=[dict(r) for r in rows], pagination=pagination)


@router.get("/settlements", response_model=ReportOut)
def settlements(
    options: QueryOptions = Depends(query_options),
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    return _run(db, user, options, build_settlement_query)


@router.get("/club-settlements", response_model=ReportOut)
def club_settlements(
    options: QueryOptions = Depends(query_options),
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    return _run(db, user, options, build_club_settlement_query)


@router.get("/clubs", response_model=ReportOut)
def clubs(
    options: QueryOptions = Depends(query_options),
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    return _run(db, user, options, build_club_query)


@router.get("/members", response_model=ReportOut)
def members(
    options: QueryOptions = Depends(query_options),
    user: UserContext = Depends(get_user_context),
    db: Session = Depends(get_db),
):
    return _run(db, user, options, build_member_query)
