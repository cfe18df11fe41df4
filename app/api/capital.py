from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_tenant_context
from app.db import get_db
from app.schemas.capital import (
    AvailableFundsRead,
    CapitalEntryCreate,
    CapitalEntryRead,
    CapitalStatsRead,
)
from app.schemas.common import ListResponse
from app.services.capital import capital_ledger
from app.services.tenant_context import TenantContext

router = APIRouter(prefix="/capital", tags=["capital"])


@router.post(
    "/entries",
    response_model=CapitalEntryRead,
    status_code=status.HTTP_201_CREATED,
)
def create_capital_entry(
    payload: CapitalEntryCreate,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return capital_ledger.create_entry(db, context, payload)


@router.get("/entries", response_model=ListResponse[CapitalEntryRead])
def list_capital_entries(
    entry_type: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return capital_ledger.list_response(
        db, context, entry_type, order_by, order_dir, limit, offset
    )


@router.get("/stats", response_model=CapitalStatsRead)
def capital_stats(
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return capital_ledger.stats(db, context)


@router.get("/available-funds", response_model=AvailableFundsRead)
def available_funds(
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return {"available_funds": capital_ledger.available_funds(db, context.tenant_id)}
