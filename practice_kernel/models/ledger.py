"""
Module: practice_kernel.models.ledger
Responsibility: ORM persistence for ledger transactions and receipt
    vouchers written by LedgerPoster.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Every posting writes a balanced pair: one debit row and one credit
      row of the same amount, sharing invoice_id (and voucher_id for
      receipts).  Asserted by LedgerPoster before flush.
    - At most one receipt voucher per invoice (uq_vouchers_invoice_type).
    - Voucher numbers are unique per (tenant, type)
      (uq_vouchers_tenant_type_number).
    - Each row has exactly one non-zero side.

Audit relevance:
    Ledger rows are never updated or deleted by the kernel.  The
    narration carries the invoice number so a row traces back to its
    business event.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from practice_kernel.db.base import TrackedBase


class LedgerTransaction(TrackedBase):
    """One side of a double-entry posting."""

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        CheckConstraint("debit >= 0 AND credit >= 0", name="chk_ledger_non_negative"),
        Index("idx_ledger_invoice", "invoice_id"),
        Index("idx_ledger_voucher", "voucher_id"),
        Index("idx_ledger_account_date", "account_id", "transaction_date"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    account_id: Mapped[UUID] = mapped_column(nullable=False)
    transaction_date: Mapped[date] = mapped_column(nullable=False)
    debit: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    narration: Mapped[str] = mapped_column(String(500), nullable=False)
    invoice_id: Mapped[UUID | None] = mapped_column(ForeignKey("invoices.id"), nullable=True)
    voucher_id: Mapped[UUID | None] = mapped_column(ForeignKey("vouchers.id"), nullable=True)

    def __repr__(self) -> str:
        side = f"Dr {self.debit}" if self.debit else f"Cr {self.credit}"
        return f"<LedgerTransaction {self.account_id} {side}>"


class Voucher(TrackedBase):
    """
    A numbered accounting voucher.  Only receipt vouchers are written, one
    per paid invoice.
    """

    __tablename__ = "vouchers"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "voucher_type", "voucher_number",
            name="uq_vouchers_tenant_type_number",
        ),
        UniqueConstraint("invoice_id", "voucher_type", name="uq_vouchers_invoice_type"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    voucher_type: Mapped[str] = mapped_column(String(20), nullable=False)
    voucher_number: Mapped[str] = mapped_column(String(50), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    voucher_date: Mapped[date] = mapped_column(nullable=False)
    receipt_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    narration: Mapped[str] = mapped_column(String(500), nullable=False)
    invoice_id: Mapped[UUID | None] = mapped_column(ForeignKey("invoices.id"), nullable=True)

    entries: Mapped[list[VoucherEntry]] = relationship(
        back_populates="voucher",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Voucher {self.voucher_number} {self.amount}>"


class VoucherEntry(TrackedBase):
    __tablename__ = "voucher_entries"

    voucher_id: Mapped[UUID] = mapped_column(ForeignKey("vouchers.id"), nullable=False)
    account_id: Mapped[UUID] = mapped_column(nullable=False)
    debit: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    narration: Mapped[str] = mapped_column(String(500), nullable=False)

    voucher: Mapped[Voucher] = relationship(back_populates="entries")
