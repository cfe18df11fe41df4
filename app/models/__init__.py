from app.models.billing import (  # noqa: F401
    BillingPlan,
    BillingProvider,
    BillingWebhookEvent,
    PlanCode,
    Subscription,
    SubscriptionStatus,
)
from app.models.capital import (  # noqa: F401
    CashEntryType,
    CashLedgerEntry,
    CashReferenceType,
)
from app.models.financing import (  # noqa: F401
    BusinessModel,
    Installment,
    InstallmentPlan,
    InstallmentStatus,
    PlanStatus,
)
from app.models.tenant import Customer, MemberRole, Tenant, TenantMember  # noqa: F401
