"""Common helper functions for service layer.

This module provides reusable utilities for:
- UUID handling
- Query ordering and pagination
- Enum validation
- Entity retrieval scoped to a tenant
- Monetary calculations
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, TypeVar

from app.services.errors import LedgerValidationError, NotFound

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

T = TypeVar("T")

MONEY_QUANT = Decimal("0.01")


def coerce_uuid(value):
    """Convert value to UUID, returning None if value is None."""
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise LedgerValidationError(f"Invalid identifier: {value}") from exc


def apply_ordering(query, order_by: str, order_dir: str, allowed_columns: dict):
    """Apply ordering to a query with validation.

    Args:
        query: SQLAlchemy query object
        order_by: Column name to order by
        order_dir: Direction ('asc' or 'desc')
        allowed_columns: Dict mapping column names to SQLAlchemy columns

    Returns:
        Query with ordering applied

    Raises:
        LedgerValidationError: if order_by is not in allowed_columns
    """
    if order_by not in allowed_columns:
        raise LedgerValidationError(
            f"Invalid order_by. Allowed: {', '.join(sorted(allowed_columns))}"
        )
    column = allowed_columns[order_by]
    if order_dir == "desc":
        return query.order_by(column.desc())
    return query.order_by(column.asc())


def apply_pagination(query, limit: int, offset: int):
    return query.limit(limit).offset(offset)


def validate_enum(value, enum_cls, label: str):
    """Validate and convert a value to an enum member.

    Accepts either the member value (``"PAID"``) or the member name
    (``"paid"``).

    Raises:
        LedgerValidationError: if value is not a valid enum member
    """
    if value is None:
        return None
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        pass
    try:
        return enum_cls[str(value).lower()]
    except KeyError as exc:
        raise LedgerValidationError(f"Invalid {label}") from exc


def get_for_tenant(db: Session, model: type[T], id, tenant_id, detail: str) -> T:
    """Get an entity by ID that belongs to the given tenant.

    Rows owned by another tenant are reported exactly like missing rows so
    callers cannot probe for foreign identifiers.

    Raises:
        NotFound: if the entity does not exist or belongs to another tenant
    """
    entity = db.get(model, coerce_uuid(id))
    if not entity or entity.tenant_id != coerce_uuid(tenant_id):
        raise NotFound(detail)
    return entity


def round_money(value: Decimal | int | float | str) -> Decimal:
    """Round monetary value to 2 decimal places (half up)."""
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
