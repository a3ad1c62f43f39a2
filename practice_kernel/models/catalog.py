"""
Module: practice_kernel.models.catalog
Responsibility: ORM persistence for the master data the scheduler reads:
    tenant settings, customers, services, negotiated prices and service
    task templates.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

These rows are owned by the surrounding CRM (plain CRUD); the kernel only
reads them, except in tests where they are seeded directly.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from practice_kernel.db.base import TrackedBase
from practice_kernel.domain.types import Cadence, NumberingScheme, OffsetType, TaskRule

if TYPE_CHECKING:
    from practice_kernel.models.work import WorkTaskConfig


class TenantSettings(TrackedBase):
    """
    Per-tenant numbering scheme and ledger defaults.

    Every nullable numbering field falls back individually to the
    installation default passed to ``numbering_scheme``.
    """

    __tablename__ = "tenant_settings"

    tenant_id: Mapped[UUID] = mapped_column(nullable=False, unique=True)

    invoice_prefix: Mapped[str | None] = mapped_column(String(20), nullable=True)
    invoice_suffix: Mapped[str | None] = mapped_column(String(20), nullable=True)
    invoice_number_width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    invoice_zero_pad: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    invoice_starting_number: Mapped[int | None] = mapped_column(Integer, nullable=True)

    default_income_account_id: Mapped[UUID | None] = mapped_column(nullable=True)
    cash_account_id: Mapped[UUID | None] = mapped_column(nullable=True)
    bank_account_id: Mapped[UUID | None] = mapped_column(nullable=True)
    default_payment_receipt_type: Mapped[str] = mapped_column(String(10), default="cash")
    receipt_prefix: Mapped[str | None] = mapped_column(String(20), nullable=True)
    receipt_number_width: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def numbering_scheme(self, defaults: NumberingScheme) -> NumberingScheme:
        def pick(value, fallback):
            return fallback if value is None else value

        return NumberingScheme(
            prefix=pick(self.invoice_prefix, defaults.prefix),
            suffix=pick(self.invoice_suffix, defaults.suffix),
            width=pick(self.invoice_number_width, defaults.width),
            zero_pad=pick(self.invoice_zero_pad, defaults.zero_pad),
            starting_number=pick(self.invoice_starting_number, defaults.starting_number),
        )

    def __repr__(self) -> str:
        return f"<TenantSettings {self.tenant_id}>"


class Customer(TrackedBase):
    """A billed client.  ``receivable_account_id`` is its ledger account."""

    __tablename__ = "customers"

    __table_args__ = (Index("idx_customers_tenant", "tenant_id"),)

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    receivable_account_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<Customer {self.name}>"


class Service(TrackedBase):
    """A billable service definition with its price, tax and income mapping."""

    __tablename__ = "services"

    __table_args__ = (Index("idx_services_tenant", "tenant_id"),)

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    default_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    tax_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    income_account_id: Mapped[UUID | None] = mapped_column(nullable=True)
    payment_terms: Mapped[str | None] = mapped_column(String(30), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"<Service {self.name}>"


class CustomerServicePrice(TrackedBase):
    """Price negotiated with one customer for one service."""

    __tablename__ = "customer_service_prices"

    __table_args__ = (
        UniqueConstraint("customer_id", "service_id", name="uq_customer_service_price"),
    )

    customer_id: Mapped[UUID] = mapped_column(ForeignKey("customers.id"), nullable=False)
    service_id: Mapped[UUID] = mapped_column(ForeignKey("services.id"), nullable=False)
    price: Mapped[Decimal] = mapped_column(nullable=False)


class ServiceTaskTemplate(TrackedBase):
    """
    One recurring task of a service and its due-date rule.

    ``cadence`` None means the task follows the work's cadence.
    ``due_date_overrides`` maps ISO period-end dates to ISO due dates.
    """

    __tablename__ = "service_task_templates"

    __table_args__ = (
        Index("idx_task_templates_service", "service_id", "sort_order"),
    )

    service_id: Mapped[UUID] = mapped_column(ForeignKey("services.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str | None] = mapped_column(String(20), nullable=True)
    estimated_hours: Mapped[Decimal | None] = mapped_column(nullable=True)

    cadence: Mapped[str | None] = mapped_column(String(20), nullable=True)
    offset_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    offset_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    offset_months: Mapped[int] = mapped_column(Integer, default=1)
    exact_due_date: Mapped[date | None] = mapped_column(nullable=True)
    anchor_day: Mapped[str | None] = mapped_column(String(20), nullable=True)
    anchor_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    due_date_overrides: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    start_date: Mapped[date | None] = mapped_column(nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def to_rule(self, override: WorkTaskConfig | None = None) -> TaskRule:
        """
        Effective rule for one work: override fields win when set.

        The template row itself is never modified.
        """

        def field(name: str):
            if override is not None and getattr(override, name) is not None:
                return getattr(override, name)
            return getattr(self, name)

        cadence = field("cadence")
        offset_type = field("offset_type")
        overrides = field("due_date_overrides") or {}
        is_active = self.is_active if override is None or override.is_active is None else override.is_active

        return TaskRule(
            template_id=self.id,
            title=self.title,
            cadence=Cadence.parse(cadence) if cadence else None,
            offset_type=OffsetType(offset_type) if offset_type else None,
            offset_value=field("offset_value"),
            offset_months=field("offset_months") or 1,
            exact_due_date=field("exact_due_date"),
            anchor_day=field("anchor_day"),
            anchor_month=field("anchor_month"),
            due_date_overrides={
                date.fromisoformat(end): date.fromisoformat(due)
                for end, due in overrides.items()
            },
            start_date=self.start_date,
            is_active=bool(is_active),
            sort_order=self.sort_order or 0,
            description=self.description,
            priority=self.priority,
            estimated_hours=self.estimated_hours,
        )

    def __repr__(self) -> str:
        return f"<ServiceTaskTemplate {self.title}>"
