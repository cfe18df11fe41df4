import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Enum, ForeignKey, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db import Base


class CashEntryType(enum.Enum):
    owner_investment = "OWNER_INVESTMENT"
    owner_withdrawal = "OWNER_WITHDRAWAL"
    adjustment = "ADJUSTMENT"
    financing_disbursed = "FINANCING_DISBURSED"
    financing_released = "FINANCING_RELEASED"
    collection_received = "COLLECTION_RECEIVED"
    collection_reversed = "COLLECTION_REVERSED"


OWNER_CAPITAL_TYPES = (
    CashEntryType.owner_investment,
    CashEntryType.owner_withdrawal,
    CashEntryType.adjustment,
)


class CashReferenceType(enum.Enum):
    installment_plan = "installment_plan"
    installment = "installment"


class CashLedgerEntry(Base):
    __tablename__ = "cash_ledger_entries"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_cash_ledger_entries_amount_non_negative"),
        CheckConstraint("direction IN (1, -1)", name="ck_cash_ledger_entries_direction"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True
    )
    entry_type: Mapped[CashEntryType] = mapped_column(Enum(CashEntryType), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    direction: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    reference_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True))
    reference_type: Mapped[CashReferenceType | None] = mapped_column(
        Enum(CashReferenceType)
    )
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    @property
    def signed_amount(self) -> Decimal:
        return self.amount * self.direction
