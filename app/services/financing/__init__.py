"""Financing services package.

Amortization, installment lifecycle, plan orchestration and reporting:
    from app.services import financing as financing_service
    financing_service.plans.create(db, context, payload)
"""

from app.services.financing.amortization import (
    Schedule,
    ScheduledInstallment,
    compute_schedule,
    generate_installments,
)
from app.services.financing.installments import (
    Installments,
    compute_plan_metrics,
    effective_status,
    installment_detail,
)
from app.services.financing.plans import Plans, plan_detail
from app.services.financing.reporting import FinancingReporting

# Singleton instances for service access
plans = Plans()
installments = Installments()
financing_reporting = FinancingReporting()

__all__ = [
    "Schedule",
    "ScheduledInstallment",
    "compute_schedule",
    "generate_installments",
    "Installments",
    "Plans",
    "FinancingReporting",
    "compute_plan_metrics",
    "effective_status",
    "installment_detail",
    "plan_detail",
    "plans",
    "installments",
    "financing_reporting",
]
