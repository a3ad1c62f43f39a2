"""
Pytest fixtures for the practice kernel test suite.

Provides:
- In-memory SQLite sessions with nested SAVEPOINT support
- Structured logging configuration and log capture
- A deterministic clock
- A seeded practice (tenant settings, customer, service, accounts) and
  factories for task templates
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

import practice_kernel.models  # noqa: F401  (registers every table)
from practice_config import PracticeSettings
from practice_kernel.db.base import Base
from practice_kernel.db.engine import install_sqlite_savepoint_support
from practice_kernel.domain.clock import DeterministicClock
from practice_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from practice_kernel.models import (
    Customer,
    CustomerServicePrice,
    Service,
    ServiceTaskTemplate,
    TenantSettings,
)
from practice_kernel.services.work_service import WorkService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

# "Today" for most tests
TODAY = datetime(2025, 10, 20, 9, 0, 0)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture practice_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, work_service):
            work_service.create_work(...)
            logs = captured_logs()
            assert any(r["message"] == "period_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("practice_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


def make_engine(url: str = "sqlite:///:memory:"):
    engine = install_sqlite_savepoint_support(create_engine(url))
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def engine():
    eng = make_engine()
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine) -> Session:
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    sess = factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(TODAY)


@pytest.fixture
def settings() -> PracticeSettings:
    return PracticeSettings()


@pytest.fixture
def work_service(session, clock, settings) -> WorkService:
    return WorkService(session, clock, TEST_ACTOR_ID, settings)


# =============================================================================
# Seeded practice
# =============================================================================


@dataclass
class Practice:
    """Master data most scenarios share."""

    session: Session
    tenant_id: UUID
    customer: Customer
    service: Service
    tenant_settings: TenantSettings
    income_account_id: UUID
    org_income_account_id: UUID
    receivable_account_id: UUID
    cash_account_id: UUID
    bank_account_id: UUID

    def template(self, title: str = "GSTR-1", service: Service | None = None, **fields) -> ServiceTaskTemplate:
        template = ServiceTaskTemplate(
            service_id=(service or self.service).id,
            title=title,
            created_by_id=TEST_ACTOR_ID,
            **fields,
        )
        self.session.add(template)
        self.session.flush()
        return template

    def negotiated_price(self, amount: Decimal) -> CustomerServicePrice:
        price = CustomerServicePrice(
            customer_id=self.customer.id,
            service_id=self.service.id,
            price=amount,
            created_by_id=TEST_ACTOR_ID,
        )
        self.session.add(price)
        self.session.flush()
        return price

    def create_work(self, work_service: WorkService, **fields):
        fields.setdefault("title", "Monthly GST compliance")
        return work_service.create_work(
            tenant_id=self.tenant_id,
            customer_id=self.customer.id,
            service_id=self.service.id,
            **fields,
        )


def seed_practice(session: Session) -> Practice:
    tenant_id = uuid4()
    accounts = {name: uuid4() for name in ("income", "org_income", "receivable", "cash", "bank")}

    tenant_settings = TenantSettings(
        tenant_id=tenant_id,
        default_income_account_id=accounts["org_income"],
        cash_account_id=accounts["cash"],
        bank_account_id=accounts["bank"],
        default_payment_receipt_type="cash",
        created_by_id=TEST_ACTOR_ID,
    )
    customer = Customer(
        tenant_id=tenant_id,
        name="Acme Traders",
        receivable_account_id=accounts["receivable"],
        created_by_id=TEST_ACTOR_ID,
    )
    service = Service(
        tenant_id=tenant_id,
        name="GST Returns",
        default_price=Decimal("1000"),
        tax_rate=Decimal("18"),
        income_account_id=accounts["income"],
        payment_terms="net_15",
        created_by_id=TEST_ACTOR_ID,
    )
    session.add_all([tenant_settings, customer, service])
    session.flush()

    return Practice(
        session=session,
        tenant_id=tenant_id,
        customer=customer,
        service=service,
        tenant_settings=tenant_settings,
        income_account_id=accounts["income"],
        org_income_account_id=accounts["org_income"],
        receivable_account_id=accounts["receivable"],
        cash_account_id=accounts["cash"],
        bank_account_id=accounts["bank"],
    )


@pytest.fixture
def practice(session) -> Practice:
    return seed_practice(session)


@pytest.fixture
def monthly_work(practice, work_service):
    """Monthly work started 2025-07-01 with one +10 days template; today 2025-10-20."""
    practice.template("GSTR-1", offset_type="days", offset_value=10)
    return practice.create_work(
        work_service,
        cadence="monthly",
        start_date=date(2025, 7, 1),
    )


# =============================================================================
# File-backed database (multiple sessions)
# =============================================================================


@pytest.fixture
def file_session_factory(tmp_path):
    """Session factory over a SQLite file, for code that opens its own sessions."""
    eng = make_engine(f"sqlite:///{tmp_path / 'practice.db'}")
    yield sessionmaker(bind=eng, expire_on_commit=False)
    eng.dispose()


@pytest.fixture
def practice_seeder():
    return seed_practice


@pytest.fixture
def actor_id() -> UUID:
    return TEST_ACTOR_ID
