"""
InvoiceGenerator -- one-shot draft invoice for a completed period or a
completed one-time work.

Responsibility:
    Resolves price, tax, income account, invoice number and due date,
    then inserts a draft invoice with one line and marks the originating
    period (or work) billed.

Architecture position:
    Kernel > Services -- imperative shell.
    Subscribed to PeriodCompleted and WorkCompleted on the
    DomainEventBus; re-driven by PeriodSweepScheduler for completed
    periods that still have no invoice.

Invariants enforced:
    - A period is invoiced only once every task it will ever hold
      exists and is completed; later-due tasks defer the invoice.
    - At most one invoice per (work, period) and per one-time work.
      Checked by an existence query first and backed by unique
      constraints; a conflict on that key returns the existing invoice.
    - tax_amount = round(price * tax_rate / 100, 2); the rate comes from
      the service and defaults to 0.
    - Reopening a period never deletes its invoice.

Failure modes (raised; the event bus persists them):
    - MissingPriceError: no price anywhere in the chain.
    - UnmappedIncomeAccountError: neither service nor tenant income account.
    - Referential errors for a missing work, period, service or customer.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from practice_config import PracticeSettings, get_active_settings
from practice_engines.billing import (
    compute_invoice_amounts,
    format_invoice_number,
    next_invoice_sequence,
    payment_due_date,
    resolve_income_account,
    resolve_price,
)
from practice_kernel.domain.clock import Clock
from practice_kernel.domain.events import PeriodCompleted, WorkCompleted
from practice_kernel.domain.types import BillingStatus, InvoiceStatus, NumberingScheme
from practice_kernel.exceptions import (
    CustomerNotFoundError,
    MissingPriceError,
    PeriodNotFoundError,
    ServiceNotFoundError,
    UnmappedIncomeAccountError,
    WorkNotFoundError,
)
from practice_kernel.logging_config import LogContext, get_logger
from practice_kernel.models.catalog import Customer, CustomerServicePrice, Service, TenantSettings
from practice_kernel.models.invoice import Invoice, InvoiceLine
from practice_kernel.models.period import WorkPeriod
from practice_kernel.models.work import WORK_COMPLETED, Work
from practice_kernel.services.base import BaseService
from practice_kernel.services.period_generator import PeriodGenerator

logger = get_logger("services.invoice_generator")

MAX_NUMBER_ATTEMPTS = 5


class InvoiceGenerator(BaseService):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        settings: PracticeSettings | None = None,
        planner: PeriodGenerator | None = None,
    ):
        super().__init__(session, clock, actor_id)
        self.settings = settings or get_active_settings()
        self.planner = planner or PeriodGenerator(session, self.clock, self.actor_id, self.settings)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def on_period_completed(self, event: PeriodCompleted) -> None:
        self.generate_for_period(event.period_id)

    def on_work_completed(self, event: WorkCompleted) -> None:
        self.generate_for_work(event.work_id)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def generate_for_period(self, period_id: UUID) -> Invoice | None:
        """
        Invoice a completed period of an auto-billed recurring work.

        Returns:
            The new invoice, the already existing one, or None when the
            period is not complete, auto-billing is off or the price is
            zero.  A period whose stored tasks are all done but which
            will still receive later-due tasks is not complete.
        """
        period = self.session.get(WorkPeriod, period_id)
        if period is None:
            raise PeriodNotFoundError(period_id)
        work = self._load_work(period.work_id)

        with LogContext.bind(work_id=work.id, period_id=period.id):
            if not period.all_tasks_completed:
                logger.debug("invoice_skipped_incomplete", extra={"period_id": period.id})
                return None
            if not work.bills_automatically:
                logger.info("invoice_skipped_auto_bill_disabled", extra={"work_id": work.id})
                return None

            existing = self.session.execute(
                select(Invoice).where(
                    Invoice.work_id == work.id,
                    Invoice.period_id == period.id,
                )
            ).scalar_one_or_none()
            if existing is not None:
                logger.debug("invoice_already_exists", extra={"invoice_id": existing.id})
                self._mark_period_billed(period, existing)
                return existing

            pending = self.planner.missing_tasks(period)
            if pending:
                logger.info(
                    "invoice_deferred_tasks_pending",
                    extra={
                        "period_id": period.id,
                        "pending_tasks": len(pending),
                        "next_due_date": min(c.due_date for c in pending),
                    },
                )
                return None

            invoice = self._create_invoice(
                work,
                period=period,
                label=period.name,
                notes=f"Auto-generated for {period.name}",
                period_override=period.billing_amount,
            )
            if invoice is not None:
                self._mark_period_billed(period, invoice)
            return invoice

    def generate_for_work(self, work_id: UUID) -> Invoice | None:
        """Invoice a completed one-time work."""
        work = self._load_work(work_id)

        with LogContext.bind(work_id=work.id):
            if work.is_recurring:
                logger.debug("invoice_skipped_recurring_work", extra={"work_id": work.id})
                return None
            if work.status != WORK_COMPLETED:
                logger.debug("invoice_skipped_incomplete", extra={"work_id": work.id})
                return None
            if not work.bills_automatically:
                logger.info("invoice_skipped_auto_bill_disabled", extra={"work_id": work.id})
                return None

            existing = self.session.execute(
                select(Invoice).where(
                    Invoice.work_id == work.id,
                    Invoice.period_id.is_(None),
                )
            ).scalar_one_or_none()
            if existing is not None:
                logger.debug("invoice_already_exists", extra={"invoice_id": existing.id})
                self._mark_work_billed(work, existing)
                return existing

            invoice = self._create_invoice(work, period=None, label=work.title, notes=work.title)
            if invoice is not None:
                self._mark_work_billed(work, invoice)
            return invoice

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    def _create_invoice(
        self,
        work: Work,
        period: WorkPeriod | None,
        label: str,
        notes: str,
        period_override: Decimal | None = None,
    ) -> Invoice | None:
        service = self.session.get(Service, work.service_id)
        if service is None:
            raise ServiceNotFoundError(work.service_id)
        customer = self.session.get(Customer, work.customer_id)
        if customer is None:
            raise CustomerNotFoundError(work.customer_id)
        tenant = self._tenant_settings(work.tenant_id)

        customer_price = self.session.execute(
            select(CustomerServicePrice.price).where(
                CustomerServicePrice.customer_id == customer.id,
                CustomerServicePrice.service_id == service.id,
            )
        ).scalar_one_or_none()
        chain = (period_override, work.billing_amount, customer_price, service.default_price)
        price = resolve_price(*chain)
        if price is None:
            if any(value is not None for value in chain):
                logger.info(
                    "invoice_skipped_zero_price",
                    extra={"work_id": work.id, "period_id": period.id if period else None},
                )
                return None
            raise MissingPriceError(work.id, service.id, period.id if period else None)

        income_account_id = resolve_income_account(
            service.income_account_id,
            tenant.default_income_account_id if tenant is not None else None,
        )
        if income_account_id is None:
            raise UnmappedIncomeAccountError(service.id, work.tenant_id)

        amounts = compute_invoice_amounts(price=price.amount, tax_rate=service.tax_rate)
        invoice_date = self.clock.today()
        due_date = payment_due_date(
            invoice_date, service.payment_terms or self.settings.default_payment_terms
        )
        scheme = self._numbering_scheme(tenant)
        existing_count = self.session.execute(
            select(func.count(Invoice.id)).where(Invoice.tenant_id == work.tenant_id)
        ).scalar_one()

        for attempt in range(MAX_NUMBER_ATTEMPTS):
            number = format_invoice_number(
                scheme, next_invoice_sequence(scheme, existing_count + attempt)
            )
            savepoint = self.session.begin_nested()
            try:
                invoice = Invoice(
                    tenant_id=work.tenant_id,
                    customer_id=customer.id,
                    work_id=work.id,
                    period_id=period.id if period else None,
                    invoice_number=number,
                    invoice_date=invoice_date,
                    due_date=due_date,
                    subtotal=amounts.subtotal,
                    tax_amount=amounts.tax_amount,
                    total_amount=amounts.total,
                    paid_amount=Decimal("0"),
                    balance_amount=amounts.total,
                    status=InvoiceStatus.DRAFT.value,
                    income_account_id=income_account_id,
                    customer_account_id=customer.receivable_account_id,
                    notes=notes,
                    created_by_id=self.actor_id,
                )
                invoice.lines.append(
                    InvoiceLine(
                        line_number=1,
                        service_id=service.id,
                        description=f"{service.name} - {label}",
                        quantity=Decimal("1"),
                        unit_price=amounts.subtotal,
                        tax_rate=amounts.tax_rate,
                        amount=amounts.subtotal,
                        created_by_id=self.actor_id,
                    )
                )
                self.session.add(invoice)
                self.session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                raced = self._existing_for(work.id, period.id if period else None)
                if raced is not None:
                    logger.info("invoice_already_exists", extra={"invoice_id": raced.id})
                    return raced
                logger.warning(
                    "invoice_number_collision",
                    extra={"invoice_number": number, "attempt": attempt + 1},
                )
                if attempt + 1 == MAX_NUMBER_ATTEMPTS:
                    raise
                continue

            logger.info(
                "invoice_generated",
                extra={
                    "invoice_id": invoice.id,
                    "invoice_number": number,
                    "work_id": work.id,
                    "period_id": period.id if period else None,
                    "price_source": price.source,
                    "subtotal": amounts.subtotal,
                    "tax_amount": amounts.tax_amount,
                    "total": amounts.total,
                },
            )
            return invoice
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_work(self, work_id: UUID) -> Work:
        work = self.session.get(Work, work_id)
        if work is None:
            raise WorkNotFoundError(work_id)
        return work

    def _tenant_settings(self, tenant_id: UUID) -> TenantSettings | None:
        return self.session.execute(
            select(TenantSettings).where(TenantSettings.tenant_id == tenant_id)
        ).scalar_one_or_none()

    def _numbering_scheme(self, tenant: TenantSettings | None) -> NumberingScheme:
        if tenant is None:
            return self.settings.invoice_numbering
        return tenant.numbering_scheme(self.settings.invoice_numbering)

    def _existing_for(self, work_id: UUID, period_id: UUID | None) -> Invoice | None:
        query = select(Invoice).where(Invoice.work_id == work_id)
        if period_id is None:
            query = query.where(Invoice.period_id.is_(None))
        else:
            query = query.where(Invoice.period_id == period_id)
        return self.session.execute(query).scalar_one_or_none()

    def _mark_period_billed(self, period: WorkPeriod, invoice: Invoice) -> None:
        period.is_billed = True
        period.invoice_id = invoice.id
        period.updated_by_id = self.actor_id
        self.session.flush()

    def _mark_work_billed(self, work: Work, invoice: Invoice) -> None:
        work.billing_status = BillingStatus.BILLED.value
        work.invoice_id = invoice.id
        work.updated_by_id = self.actor_id
        self.session.flush()
