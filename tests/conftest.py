import os
import sqlite3
import uuid
from datetime import date
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base

# Register UUID adapter for SQLite - store as string
sqlite3.register_adapter(uuid.UUID, lambda u: str(u))


# Monkey-patch SQLAlchemy's UUID type for SQLite compatibility
# This must happen before any models are imported
from sqlalchemy.sql import sqltypes

_original_uuid_bind_processor = sqltypes.Uuid.bind_processor
_original_uuid_result_processor = sqltypes.Uuid.result_processor


def _sqlite_uuid_bind_processor(self, dialect):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return str(value)
                return str(uuid.UUID(value)) if value else None
            return None
        return process
    return _original_uuid_bind_processor(self, dialect)


def _sqlite_uuid_result_processor(self, dialect, coltype):
    if dialect.name == "sqlite":
        def process(value):
            if value is not None:
                if isinstance(value, uuid.UUID):
                    return value
                return uuid.UUID(value) if value else None
            return None
        return process
    return _original_uuid_result_processor(self, dialect, coltype)


setattr(sqltypes.Uuid, "bind_processor", _sqlite_uuid_bind_processor)
setattr(sqltypes.Uuid, "result_processor", _sqlite_uuid_result_processor)

from app.models.billing import BillingPlan, PlanCode
from app.models.capital import CashEntryType
from app.models.tenant import Customer, MemberRole, Tenant, TenantMember
from app.schemas.capital import CapitalEntryCreate
from app.schemas.financing import InstallmentPlanCreate
from app.services.capital import capital_ledger
from app.services.tenant_context import TenantContext


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        # Use PostgreSQL for tests (recommended)
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={
                "check_same_thread": False,
            },
            poolclass=StaticPool,
        )

        # pysqlite needs explicit BEGIN for SAVEPOINT-based test isolation
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, _connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)

    return engine


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


def _make_tenant(db_session, name: str) -> Tenant:
    tenant = Tenant(name=name)
    db_session.add(tenant)
    db_session.commit()
    db_session.refresh(tenant)
    return tenant


def _make_context(db_session, tenant: Tenant, role: MemberRole) -> TenantContext:
    user_id = uuid.uuid4()
    db_session.add(TenantMember(tenant_id=tenant.id, user_id=user_id, role=role))
    db_session.commit()
    return TenantContext(tenant_id=tenant.id, user_id=user_id, role=role)


@pytest.fixture()
def tenant(db_session):
    return _make_tenant(db_session, "Karachi Electronics")


@pytest.fixture()
def other_tenant(db_session):
    return _make_tenant(db_session, "Lahore Motors")


@pytest.fixture()
def owner_context(db_session, tenant):
    return _make_context(db_session, tenant, MemberRole.owner)


@pytest.fixture()
def admin_context(db_session, tenant):
    return _make_context(db_session, tenant, MemberRole.admin)


@pytest.fixture()
def member_context(db_session, tenant):
    return _make_context(db_session, tenant, MemberRole.member)


@pytest.fixture()
def viewer_context(db_session, tenant):
    return _make_context(db_session, tenant, MemberRole.viewer)


@pytest.fixture()
def other_context(db_session, other_tenant):
    return _make_context(db_session, other_tenant, MemberRole.owner)


@pytest.fixture()
def customer(db_session, tenant):
    customer = Customer(tenant_id=tenant.id, name="Ayesha Khan", phone="+92-300-0000000")
    db_session.add(customer)
    db_session.commit()
    db_session.refresh(customer)
    return customer


@pytest.fixture()
def other_customer(db_session, other_tenant):
    customer = Customer(tenant_id=other_tenant.id, name="Bilal Ahmed")
    db_session.add(customer)
    db_session.commit()
    db_session.refresh(customer)
    return customer


@pytest.fixture()
def invest(db_session):
    """Post an owner investment for a context."""

    def _invest(context: TenantContext, amount: str):
        return capital_ledger.create_entry(
            db_session,
            context,
            CapitalEntryCreate(
                entry_type=CashEntryType.owner_investment, amount=Decimal(amount)
            ),
        )

    return _invest


@pytest.fixture()
def funded_tenant(owner_context, invest):
    """Tenant with 10,000.00 of owner capital."""
    invest(owner_context, "10000.00")
    return owner_context


@pytest.fixture()
def plan_payload():
    """Build a plan request: 1500 price, 300 upfront, 5% for 12 months."""

    def _payload(customer, **overrides) -> InstallmentPlanCreate:
        data = {
            "customer_id": customer.id,
            "title": "Refrigerator",
            "total_price": Decimal("1500.00"),
            "upfront_paid": Decimal("300.00"),
            "monthly_profit_rate": Decimal("5"),
            "total_months": 12,
            "start_date": date(2025, 1, 15),
        }
        data.update(overrides)
        return InstallmentPlanCreate(**data)

    return _payload


@pytest.fixture()
def billing_plans(db_session):
    plans = {}
    for code in PlanCode:
        plan = BillingPlan(code=code)
        db_session.add(plan)
        plans[code] = plan
    db_session.commit()
    return plans
