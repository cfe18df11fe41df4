from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from app.models.capital import CashEntryType, CashReferenceType


class CapitalEntryCreate(BaseModel):
    entry_type: CashEntryType
    amount: Decimal = Field(max_digits=12, decimal_places=2)
    notes: str | None = Field(default=None, max_length=1000)


class CapitalEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID
    entry_type: CashEntryType
    amount: Decimal
    direction: int
    reference_id: UUID | None = None
    reference_type: CashReferenceType | None = None
    notes: str | None = None
    created_at: datetime

    @computed_field
    @property
    def signed_amount(self) -> Decimal:
        return self.amount * self.direction


class CapitalStatsRead(BaseModel):
    total_investment: Decimal
    total_withdrawal: Decimal
    total_adjustment: Decimal
    balance: Decimal
    equity: Decimal
    capital_deployed: Decimal
    available_funds: Decimal


class AvailableFundsRead(BaseModel):
    available_funds: Decimal
