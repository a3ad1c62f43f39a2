"""
Module: practice_kernel.models.invoice
Responsibility: ORM persistence for invoices and their line items.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Invoice numbers are unique per tenant (uq_invoices_tenant_number).
    - At most one invoice per (work, period) (uq_invoices_work_period).
    - At most one invoice per one-time work: partial unique index on
      work_id where period_id IS NULL (uq_invoices_work_one_time).
    - total_amount == subtotal + tax_amount, set once by InvoiceGenerator.

Failure modes:
    - IntegrityError on either uniqueness key.  InvoiceGenerator treats a
      work/period collision as "already invoiced" and a number collision
      as a reason to draw the next number.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from practice_kernel.db.base import TrackedBase
from practice_kernel.domain.types import InvoiceStatus


class Invoice(TrackedBase):
    """A bill raised for one completed period or one completed one-time work."""

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="uq_invoices_tenant_number"),
        UniqueConstraint("work_id", "period_id", name="uq_invoices_work_period"),
        Index(
            "uq_invoices_work_one_time",
            "work_id",
            unique=True,
            sqlite_where=text("period_id IS NULL AND work_id IS NOT NULL"),
            postgresql_where=text("period_id IS NULL AND work_id IS NOT NULL"),
        ),
        Index("idx_invoices_customer", "customer_id"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    customer_id: Mapped[UUID] = mapped_column(ForeignKey("customers.id"), nullable=False)
    work_id: Mapped[UUID | None] = mapped_column(ForeignKey("works.id"), nullable=True)
    period_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("work_periods.id"), nullable=True
    )

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_date: Mapped[date] = mapped_column(nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    balance_amount: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=InvoiceStatus.DRAFT.value)
    income_account_id: Mapped[UUID | None] = mapped_column(nullable=True)
    customer_account_id: Mapped[UUID | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list[InvoiceLine]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.line_number",
    )

    @property
    def status_enum(self) -> InvoiceStatus:
        return InvoiceStatus.parse(self.status)

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number} {self.total_amount} ({self.status})>"


class InvoiceLine(TrackedBase):
    __tablename__ = "invoice_lines"

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    line_number: Mapped[int] = mapped_column(default=1)
    service_id: Mapped[UUID | None] = mapped_column(ForeignKey("services.id"), nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="lines")
