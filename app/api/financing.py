from datetime import date

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from app.api.deps import get_tenant_context
from app.db import get_db
from app.schemas.common import ListResponse
from app.schemas.financing import (
    InstallmentDetailRead,
    InstallmentPlanCreate,
    InstallmentPlanDetailRead,
    InstallmentPlanStatsRead,
    InstallmentRead,
    RecordPaymentRequest,
    RevertPaymentRequest,
)
from app.services import financing as financing_service
from app.services.tenant_context import TenantContext

router = APIRouter()


# --- Installment plans ---


@router.post(
    "/installment-plans",
    response_model=InstallmentPlanDetailRead,
    status_code=status.HTTP_201_CREATED,
    tags=["installment-plans"],
)
def create_installment_plan(
    payload: InstallmentPlanCreate,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    plan = financing_service.plans.create(db, context, payload)
    return financing_service.plan_detail(plan)


@router.get(
    "/installment-plans",
    response_model=ListResponse[InstallmentPlanDetailRead],
    tags=["installment-plans"],
)
def list_installment_plans(
    customer_id: str | None = None,
    status: str | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return financing_service.plans.list_response(
        db, context, customer_id, status, order_by, order_dir, limit, offset
    )


@router.get(
    "/installment-plans/stats",
    response_model=InstallmentPlanStatsRead,
    tags=["installment-plans"],
)
def installment_plan_stats(
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return financing_service.financing_reporting.plan_stats(db, context)


@router.get(
    "/installment-plans/{plan_id}",
    response_model=InstallmentPlanDetailRead,
    tags=["installment-plans"],
)
def get_installment_plan(
    plan_id: str,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return financing_service.plans.detail(db, context, plan_id)


@router.delete(
    "/installment-plans/{plan_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["installment-plans"],
)
def delete_installment_plan(
    plan_id: str,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    financing_service.plans.delete(db, context, plan_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/installment-plans/{plan_id}/installments",
    response_model=ListResponse[InstallmentDetailRead],
    tags=["installment-plans"],
)
def list_plan_installments(
    plan_id: str,
    limit: int = Query(default=120, ge=1, le=600),
    offset: int = Query(default=0, ge=0),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    plan = financing_service.plans.get(db, context, plan_id)
    return financing_service.installments.list_response(
        db,
        context,
        None,
        str(plan.id),
        None,
        None,
        None,
        False,
        False,
        "installment_number",
        "asc",
        limit,
        offset,
    )


# --- Installments ---


@router.get(
    "/installments",
    response_model=ListResponse[InstallmentDetailRead],
    tags=["installments"],
)
def list_installments(
    status: str | None = None,
    installment_plan_id: str | None = None,
    customer_id: str | None = None,
    due_from: date | None = None,
    due_to: date | None = None,
    overdue_only: bool = False,
    upcoming_only: bool = False,
    order_by: str = Query(default="due_date"),
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return financing_service.installments.list_response(
        db,
        context,
        status,
        installment_plan_id,
        customer_id,
        due_from,
        due_to,
        overdue_only,
        upcoming_only,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.post(
    "/installments/{installment_id}/payments",
    response_model=InstallmentRead,
    tags=["installments"],
)
def record_installment_payment(
    installment_id: str,
    payload: RecordPaymentRequest,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return financing_service.installments.record_payment(db, context, installment_id, payload)


@router.post(
    "/installments/{installment_id}/revert",
    response_model=InstallmentRead,
    tags=["installments"],
)
def revert_installment_payment(
    installment_id: str,
    payload: RevertPaymentRequest | None = None,
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
):
    return financing_service.installments.revert_to_pending(
        db, context, installment_id, payload or RevertPaymentRequest()
    )
