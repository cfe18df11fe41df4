"""initial ledger schema

Revision ID: 0001_initial_ledger
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = "0001_initial_ledger"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

member_role = sa.Enum("owner", "admin", "member", "viewer", name="memberrole")
business_model = sa.Enum("product_owner", "financer_only", name="businessmodel")
installment_status = sa.Enum("pending", "paid", "overdue", name="installmentstatus")
cash_entry_type = sa.Enum(
    "owner_investment",
    "owner_withdrawal",
    "adjustment",
    "financing_disbursed",
    "financing_released",
    "collection_received",
    "collection_reversed",
    name="cashentrytype",
)
cash_reference_type = sa.Enum("installment_plan", "installment", name="cashreferencetype")
plan_code = sa.Enum("free", "starter", "pro", name="plancode")
subscription_status = sa.Enum(
    "trialing", "active", "past_due", "canceled", "expired", name="subscriptionstatus"
)
billing_provider = sa.Enum("lemon_squeezy", name="billingprovider")


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now())
        )
    return columns


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(160), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_table(
        "tenant_members",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("role", member_role, nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_members_tenant_user"),
    )
    op.create_table(
        "customers",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("phone", sa.String(40), nullable=True),
        sa.Column("address", sa.Text, nullable=True),
        sa.Column("national_id", sa.String(60), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_customers_tenant_id", "customers", ["tenant_id"])

    op.create_table(
        "installment_plans",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column(
            "customer_id", UUID(as_uuid=True), sa.ForeignKey("customers.id"), nullable=False
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("upfront_paid", sa.Numeric(12, 2), nullable=True),
        sa.Column("finance_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("monthly_profit_rate", sa.Numeric(7, 4), nullable=True),
        sa.Column("total_months", sa.Integer, nullable=False),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("business_model", business_model, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_installment_plans_tenant_id", "installment_plans", ["tenant_id"])

    op.create_table(
        "installments",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "installment_plan_id",
            UUID(as_uuid=True),
            sa.ForeignKey("installment_plans.id"),
            nullable=False,
        ),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("installment_number", sa.Integer, nullable=False),
        sa.Column("due_date", sa.Date, nullable=False),
        sa.Column("amount_due", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=True),
        sa.Column("principal_due", sa.Numeric(12, 2), nullable=True),
        sa.Column("principal_paid", sa.Numeric(12, 2), nullable=True),
        sa.Column("status", installment_status, nullable=True),
        sa.Column("paid_on", sa.Date, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "installment_plan_id", "installment_number", name="uq_installments_plan_number"
        ),
    )
    op.create_index("ix_installments_tenant_id", "installments", ["tenant_id"])
    op.create_index("ix_installments_status_due_date", "installments", ["status", "due_date"])

    op.create_table(
        "cash_ledger_entries",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", UUID(as_uuid=True), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("entry_type", cash_entry_type, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("direction", sa.Integer, nullable=False, server_default="1"),
        sa.Column("reference_id", UUID(as_uuid=True), nullable=True),
        sa.Column("reference_type", cash_reference_type, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        *_timestamps(updated=False),
        sa.CheckConstraint("amount >= 0", name="ck_cash_ledger_entries_amount_non_negative"),
        sa.CheckConstraint("direction IN (1, -1)", name="ck_cash_ledger_entries_direction"),
    )
    op.create_index("ix_cash_ledger_entries_tenant_id", "cash_ledger_entries", ["tenant_id"])

    op.create_table(
        "billing_plans",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("code", plan_code, nullable=False, unique=True),
        sa.Column("active_plan_limit", sa.Integer, nullable=True),
        sa.Column("customer_limit", sa.Integer, nullable=True),
        sa.Column("installment_plan_limit", sa.Integer, nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("billing_period", sa.String(20), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_table(
        "subscriptions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "tenant_id",
            UUID(as_uuid=True),
            sa.ForeignKey("tenants.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("plan_id", UUID(as_uuid=True), sa.ForeignKey("billing_plans.id"), nullable=True),
        sa.Column("status", subscription_status, nullable=True),
        sa.Column("provider", billing_provider, nullable=True),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_subscription_id", sa.String(120), nullable=True),
        sa.Column("provider_customer_id", sa.String(120), nullable=True),
        sa.Column("provider_product_id", sa.String(120), nullable=True),
        sa.Column("provider_variant_id", sa.String(120), nullable=True),
        sa.Column("provider_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_subscriptions_provider_subscription_id",
        "subscriptions",
        ["provider_subscription_id"],
    )
    op.create_table(
        "billing_webhook_events",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("event_type", sa.String(120), nullable=False),
        sa.Column("tenant_id", UUID(as_uuid=True), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    plans = sa.table(
        "billing_plans",
        sa.column("id", UUID(as_uuid=True)),
        sa.column("code", plan_code),
        sa.column("active_plan_limit", sa.Integer),
        sa.column("customer_limit", sa.Integer),
        sa.column("installment_plan_limit", sa.Integer),
        sa.column("price", sa.Numeric(12, 2)),
        sa.column("billing_period", sa.String(20)),
    )
    op.bulk_insert(
        plans,
        [
            {
                "id": "6f1c5a8e-0b1e-4c1f-9a55-7d0f7c1a0001",
                "code": "free",
                "active_plan_limit": None,
                "customer_limit": None,
                "installment_plan_limit": None,
                "price": 0,
                "billing_period": "monthly",
            },
            {
                "id": "6f1c5a8e-0b1e-4c1f-9a55-7d0f7c1a0002",
                "code": "starter",
                "active_plan_limit": None,
                "customer_limit": None,
                "installment_plan_limit": None,
                "price": 0,
                "billing_period": "monthly",
            },
            {
                "id": "6f1c5a8e-0b1e-4c1f-9a55-7d0f7c1a0003",
                "code": "pro",
                "active_plan_limit": None,
                "customer_limit": None,
                "installment_plan_limit": None,
                "price": 0,
                "billing_period": "monthly",
            },
        ],
    )


def downgrade() -> None:
    op.drop_table("billing_webhook_events")
    op.drop_index("ix_subscriptions_provider_subscription_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("billing_plans")
    op.drop_index("ix_cash_ledger_entries_tenant_id", table_name="cash_ledger_entries")
    op.drop_table("cash_ledger_entries")
    op.drop_index("ix_installments_status_due_date", table_name="installments")
    op.drop_index("ix_installments_tenant_id", table_name="installments")
    op.drop_table("installments")
    op.drop_index("ix_installment_plans_tenant_id", table_name="installment_plans")
    op.drop_table("installment_plans")
    op.drop_index("ix_customers_tenant_id", table_name="customers")
    op.drop_table("customers")
    op.drop_table("tenant_members")
    op.drop_table("tenants")
    bind = op.get_bind()
    for enum_type in (
        billing_provider,
        subscription_status,
        plan_code,
        cash_reference_type,
        cash_entry_type,
        installment_status,
        business_model,
        member_role,
    ):
        enum_type.drop(bind, checkfirst=True)
