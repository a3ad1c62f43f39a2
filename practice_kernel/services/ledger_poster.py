"""
LedgerPoster -- financial effects of invoice status transitions.

Responsibility:
    Keeps the ledger consistent with an invoice's status:

        sent / paid          receivable Dr / income Cr at the invoice date,
                             posted once per invoice
        paid                 additionally a receipt voucher:
                             cash-or-bank Dr / receivable Cr
        leaves paid          receipt voucher and its rows removed,
                             invoice posting kept
        draft / cancelled    every row and voucher of the invoice removed

Architecture position:
    Kernel > Services -- imperative shell.
    Subscribed to InvoiceStatusChanged on the DomainEventBus.

Invariants enforced:
    - Every insert is a balanced pair; checked before flush.
    - Idempotent per invoice and target status: the invoice posting is
      found by (invoice_id, voucher_id IS NULL) and the receipt by the
      unique (invoice_id, voucher_type) key, so a repeat posts nothing.
    - Ledger rows are only ever inserted or deleted, never updated.

Failure modes (raised; the event bus persists them):
    - UnmappedLedgerAccountError: invoice lacks income or receivable account.
    - MissingReceiptAccountError: tenant has no account for its receipt type.
    - UnbalancedPostingError: internal bug guard.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from practice_config import PracticeSettings, get_active_settings
from practice_engines.billing import format_receipt_number
from practice_kernel.domain.clock import Clock
from practice_kernel.domain.events import InvoiceStatusChanged
from practice_kernel.domain.types import InvoiceStatus, ReceiptType, VoucherType
from practice_kernel.exceptions import (
    InvoiceNotFoundError,
    MissingReceiptAccountError,
    UnbalancedPostingError,
    UnmappedLedgerAccountError,
)
from practice_kernel.logging_config import LogContext, get_logger
from practice_kernel.models.catalog import TenantSettings
from practice_kernel.models.invoice import Invoice
from practice_kernel.models.ledger import LedgerTransaction, Voucher, VoucherEntry
from practice_kernel.services.base import BaseService

logger = get_logger("services.ledger_poster")

_ZERO = Decimal("0")


@dataclass(frozen=True)
class PostingResult:
    invoice_id: UUID
    status: InvoiceStatus
    rows_posted: int = 0
    rows_removed: int = 0
    receipt_number: str | None = None


class LedgerPoster(BaseService):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        settings: PracticeSettings | None = None,
    ):
        super().__init__(session, clock, actor_id)
        self.settings = settings or get_active_settings()

    def on_invoice_status_changed(self, event: InvoiceStatusChanged) -> None:
        self.apply_status_change(event.invoice_id, event.old_status, event.new_status)

    def apply_status_change(
        self,
        invoice_id: UUID,
        old_status: InvoiceStatus | str,
        new_status: InvoiceStatus | str,
    ) -> PostingResult:
        """
        Bring the ledger in line with ``new_status``.

        ``old_status`` is informational; every rule is derived from the
        target status and the rows already present, which is what makes a
        re-applied transition a no-op.
        """
        old_status = InvoiceStatus.parse(old_status)
        new_status = InvoiceStatus.parse(new_status)
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)

        with LogContext.bind(invoice_id=invoice.id, work_id=invoice.work_id):
            if not new_status.posts_to_ledger:
                removed = self._reverse_all(invoice)
                result = PostingResult(invoice.id, new_status, rows_removed=removed)
            else:
                removed = 0
                if new_status is not InvoiceStatus.PAID:
                    removed = self._remove_receipts(invoice)
                posted = self._ensure_invoice_posting(invoice)
                receipt_number = None
                if new_status is InvoiceStatus.PAID:
                    receipt_posted, receipt_number = self._ensure_receipt(invoice)
                    posted += receipt_posted
                result = PostingResult(
                    invoice.id,
                    new_status,
                    rows_posted=posted,
                    rows_removed=removed,
                    receipt_number=receipt_number,
                )

            logger.info(
                "invoice_status_applied",
                extra={
                    "invoice_id": invoice.id,
                    "old_status": old_status.value,
                    "new_status": new_status.value,
                    "rows_posted": result.rows_posted,
                    "rows_removed": result.rows_removed,
                },
            )
            return result

    # ------------------------------------------------------------------
    # Invoice posting
    # ------------------------------------------------------------------

    def _ensure_invoice_posting(self, invoice: Invoice) -> int:
        already = self.session.execute(
            select(func.count(LedgerTransaction.id)).where(
                LedgerTransaction.invoice_id == invoice.id,
                LedgerTransaction.voucher_id.is_(None),
            )
        ).scalar_one()
        if already:
            logger.debug("invoice_already_posted", extra={"invoice_id": invoice.id})
            return 0

        if invoice.customer_account_id is None:
            raise UnmappedLedgerAccountError(invoice.id, "receivable_account")
        if invoice.income_account_id is None:
            raise UnmappedLedgerAccountError(invoice.id, "income_account")

        amount = invoice.total_amount
        rows = [
            self._row(invoice, invoice.customer_account_id, debit=amount,
                      narration=f"Invoice {invoice.invoice_number} - Customer receivable"),
            self._row(invoice, invoice.income_account_id, credit=amount,
                      narration=f"Invoice {invoice.invoice_number} - Service income"),
        ]
        self._add_balanced(invoice, rows)
        logger.info(
            "ledger_pair_posted",
            extra={
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "amount": amount,
                "debit_account_id": invoice.customer_account_id,
                "credit_account_id": invoice.income_account_id,
            },
        )
        return len(rows)

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    def _ensure_receipt(self, invoice: Invoice) -> tuple[int, str | None]:
        existing = self.session.execute(
            select(Voucher).where(
                Voucher.invoice_id == invoice.id,
                Voucher.voucher_type == VoucherType.RECEIPT.value,
            )
        ).scalar_one_or_none()
        if existing is not None:
            logger.debug("receipt_already_posted", extra={"voucher_number": existing.voucher_number})
            self._set_paid(invoice, paid=True)
            return 0, existing.voucher_number

        tenant = self.session.execute(
            select(TenantSettings).where(TenantSettings.tenant_id == invoice.tenant_id)
        ).scalar_one_or_none()
        receipt_type = ReceiptType(
            (tenant.default_payment_receipt_type if tenant is not None else None)
            or ReceiptType.CASH.value
        )
        if tenant is None:
            receipt_account_id = None
        elif receipt_type is ReceiptType.BANK:
            receipt_account_id = tenant.bank_account_id
        else:
            receipt_account_id = tenant.cash_account_id
        if receipt_account_id is None:
            raise MissingReceiptAccountError(invoice.tenant_id, receipt_type.value)
        if invoice.customer_account_id is None:
            raise UnmappedLedgerAccountError(invoice.id, "receivable_account")

        prefix = self.settings.receipt_numbering.prefix
        width = self.settings.receipt_numbering.width
        if tenant.receipt_prefix is not None:
            prefix = tenant.receipt_prefix
        if tenant.receipt_number_width is not None:
            width = tenant.receipt_number_width

        last_sequence = self.session.execute(
            select(func.max(Voucher.sequence_number)).where(
                Voucher.tenant_id == invoice.tenant_id,
                Voucher.voucher_type == VoucherType.RECEIPT.value,
            )
        ).scalar_one()
        sequence = (last_sequence or 0) + 1
        number = format_receipt_number(prefix, sequence, width)

        amount = invoice.total_amount
        narration = f"Receipt against Invoice {invoice.invoice_number}"
        voucher = Voucher(
            tenant_id=invoice.tenant_id,
            voucher_type=VoucherType.RECEIPT.value,
            voucher_number=number,
            sequence_number=sequence,
            voucher_date=self.clock.today(),
            receipt_type=receipt_type.value,
            amount=amount,
            narration=narration,
            invoice_id=invoice.id,
            created_by_id=self.actor_id,
        )
        voucher.entries.extend([
            VoucherEntry(account_id=receipt_account_id, debit=amount, credit=_ZERO,
                         narration=narration, created_by_id=self.actor_id),
            VoucherEntry(account_id=invoice.customer_account_id, debit=_ZERO, credit=amount,
                         narration=narration, created_by_id=self.actor_id),
        ])
        self.session.add(voucher)
        self.session.flush()

        rows = [
            self._row(invoice, entry.account_id, debit=entry.debit, credit=entry.credit,
                      narration=narration, voucher_id=voucher.id,
                      transaction_date=voucher.voucher_date)
            for entry in voucher.entries
        ]
        self._add_balanced(invoice, rows)
        self._set_paid(invoice, paid=True)
        logger.info(
            "receipt_voucher_posted",
            extra={
                "invoice_id": invoice.id,
                "voucher_id": voucher.id,
                "voucher_number": number,
                "receipt_type": receipt_type.value,
                "amount": amount,
            },
        )
        return len(rows), number

    def _remove_receipts(self, invoice: Invoice) -> int:
        vouchers = self.session.execute(
            select(Voucher).where(
                Voucher.invoice_id == invoice.id,
                Voucher.voucher_type == VoucherType.RECEIPT.value,
            )
        ).scalars().all()
        removed = 0
        for voucher in vouchers:
            removed += self.session.execute(
                delete(LedgerTransaction).where(LedgerTransaction.voucher_id == voucher.id)
            ).rowcount
            self.session.delete(voucher)
        if vouchers:
            self.session.flush()
            logger.info(
                "receipt_vouchers_removed",
                extra={"invoice_id": invoice.id, "vouchers": len(vouchers), "rows_removed": removed},
            )
        self._set_paid(invoice, paid=False)
        return removed

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    def _reverse_all(self, invoice: Invoice) -> int:
        removed = self._remove_receipts(invoice)
        removed += self.session.execute(
            delete(LedgerTransaction).where(LedgerTransaction.invoice_id == invoice.id)
        ).rowcount
        self.session.flush()
        if removed:
            logger.info("ledger_postings_reversed", extra={"invoice_id": invoice.id, "rows_removed": removed})
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _row(
        self,
        invoice: Invoice,
        account_id: UUID,
        narration: str,
        debit: Decimal = _ZERO,
        credit: Decimal = _ZERO,
        voucher_id: UUID | None = None,
        transaction_date=None,
    ) -> LedgerTransaction:
        return LedgerTransaction(
            tenant_id=invoice.tenant_id,
            account_id=account_id,
            transaction_date=transaction_date or invoice.invoice_date,
            debit=debit,
            credit=credit,
            narration=narration,
            invoice_id=invoice.id,
            voucher_id=voucher_id,
            created_by_id=self.actor_id,
        )

    def _add_balanced(self, invoice: Invoice, rows: list[LedgerTransaction]) -> None:
        debits = sum((r.debit for r in rows), _ZERO)
        credits = sum((r.credit for r in rows), _ZERO)
        if debits != credits:
            raise UnbalancedPostingError(invoice.id, str(debits), str(credits))
        self.session.add_all(rows)
        self.session.flush()

    def _set_paid(self, invoice: Invoice, paid: bool) -> None:
        if paid:
            invoice.paid_amount = invoice.total_amount
            invoice.balance_amount = _ZERO
        else:
            invoice.paid_amount = _ZERO
            invoice.balance_amount = invoice.total_amount
        self.session.flush()
