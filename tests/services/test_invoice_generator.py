"""
Tests for InvoiceGenerator, driven through the completion cascade:
completing the last task of a period publishes PeriodCompleted and the
invoice generator subscribed to it creates the draft invoice.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from practice_kernel.domain.events import PeriodCompleted
from practice_kernel.domain.types import (
    BillingStatus,
    FailureType,
    InvoiceStatus,
    PeriodStatus,
    PipelineStage,
    TaskStatus,
)
from practice_kernel.models import Invoice, PeriodTask, WorkPeriod, WorkTask


def periods_of(session, work_id) -> list[WorkPeriod]:
    return list(
        session.execute(
            select(WorkPeriod)
            .where(WorkPeriod.work_id == work_id)
            .order_by(WorkPeriod.period_start_date)
        ).scalars()
    )


def complete_period(session, work_service, period, status=TaskStatus.COMPLETED):
    tasks = session.execute(
        select(PeriodTask).where(PeriodTask.period_id == period.id)
    ).scalars().all()
    result = None
    for task in tasks:
        result = work_service.set_period_task_status(task.id, status)
    return result


def invoices_of(session, work_id) -> list[Invoice]:
    return list(
        session.execute(
            select(Invoice).where(Invoice.work_id == work_id).order_by(Invoice.invoice_number)
        ).scalars()
    )


@pytest.fixture
def september_work(practice, work_service):
    """Monthly work whose only generated period is September 2025."""
    practice.template("GSTR-1", offset_type="days", offset_value=10)
    return practice.create_work(
        work_service,
        cadence="monthly",
        start_date=date(2025, 9, 1),
        period_calculation_type="current_period",
    )


# =============================================================================
# Cascade
# =============================================================================


class TestPeriodInvoice:

    def test_completed_period_is_invoiced(self, session, practice, work_service, september_work):
        (period,) = periods_of(session, september_work.id)
        complete_period(session, work_service, period)

        (invoice,) = invoices_of(session, september_work.id)
        assert invoice.invoice_number == "INV-0001"
        assert invoice.period_id == period.id
        assert invoice.subtotal == Decimal("1000.00")
        assert invoice.tax_amount == Decimal("180.00")
        assert invoice.total_amount == Decimal("1180.00")
        assert invoice.balance_amount == Decimal("1180.00")
        assert invoice.invoice_date == date(2025, 10, 20)
        assert invoice.due_date == date(2025, 11, 4)
        assert invoice.status == InvoiceStatus.DRAFT.value
        assert invoice.income_account_id == practice.income_account_id
        assert invoice.customer_account_id == practice.receivable_account_id
        assert invoice.notes == "Auto-generated for September 2025"

        (line,) = invoice.lines
        assert line.description == "GST Returns - September 2025"
        assert line.quantity == Decimal("1")
        assert line.amount == Decimal("1000.00")

        assert period.is_billed is True
        assert period.invoice_id == invoice.id
        assert period.status == PeriodStatus.COMPLETED.value

    def test_partial_completion_does_not_invoice(self, session, practice, work_service):
        practice.template("GSTR-1", offset_type="days", offset_value=10)
        practice.template("GSTR-3B", offset_type="days", offset_value=15)
        work = practice.create_work(
            work_service,
            cadence="monthly",
            start_date=date(2025, 9, 1),
            period_calculation_type="current_period",
        )
        (period,) = periods_of(session, work.id)
        first_task = session.execute(
            select(PeriodTask).where(PeriodTask.period_id == period.id).limit(1)
        ).scalar_one()
        work_service.set_period_task_status(first_task.id, TaskStatus.COMPLETED)

        assert invoices_of(session, work.id) == []
        assert work_service.invoices.generate_for_period(period.id) is None

    def test_numbers_increase_per_tenant(self, session, work_service, monthly_work):
        for period in periods_of(session, monthly_work.id)[:2]:
            complete_period(session, work_service, period)
        assert [i.invoice_number for i in invoices_of(session, monthly_work.id)] == [
            "INV-0001",
            "INV-0002",
        ]

    def test_tenant_numbering_scheme(self, session, practice, work_service, september_work):
        practice.tenant_settings.invoice_prefix = "ACME"
        practice.tenant_settings.invoice_number_width = 3
        practice.tenant_settings.invoice_suffix = "25-26"
        session.flush()
        complete_period(session, work_service, periods_of(session, september_work.id)[0])
        assert invoices_of(session, september_work.id)[0].invoice_number == "ACME-001-25-26"

    def test_number_collision_retries(self, session, practice, work_service, september_work, captured_logs):
        session.add(
            Invoice(
                tenant_id=practice.tenant_id,
                customer_id=practice.customer.id,
                invoice_number="INV-0002",
                invoice_date=date(2025, 10, 1),
                due_date=date(2025, 10, 31),
                subtotal=Decimal("10"),
                tax_amount=Decimal("0"),
                total_amount=Decimal("10"),
                balance_amount=Decimal("10"),
                created_by_id=work_service.actor_id,
            )
        )
        session.flush()

        complete_period(session, work_service, periods_of(session, september_work.id)[0])

        assert invoices_of(session, september_work.id)[0].invoice_number == "INV-0003"
        assert any(r["message"] == "invoice_number_collision" for r in captured_logs())


# =============================================================================
# Price and account resolution
# =============================================================================


class TestPriceResolution:

    def test_customer_price_beats_service_default(self, session, practice, work_service, september_work):
        practice.negotiated_price(Decimal("900"))
        complete_period(session, work_service, periods_of(session, september_work.id)[0])
        assert invoices_of(session, september_work.id)[0].subtotal == Decimal("900.00")

    def test_work_billing_amount_beats_customer_price(self, session, practice, work_service):
        practice.template("GSTR-1", offset_type="days", offset_value=10)
        practice.negotiated_price(Decimal("900"))
        work = practice.create_work(
            work_service,
            cadence="monthly",
            start_date=date(2025, 9, 1),
            period_calculation_type="current_period",
            billing_amount=Decimal("1500"),
        )
        complete_period(session, work_service, periods_of(session, work.id)[0])
        invoice = invoices_of(session, work.id)[0]
        assert invoice.subtotal == Decimal("1500.00")
        assert invoice.total_amount == Decimal("1770.00")

    def test_period_amount_wins(self, session, work_service, september_work):
        (period,) = periods_of(session, september_work.id)
        period.billing_amount = Decimal("1200")
        session.flush()
        complete_period(session, work_service, period)
        assert invoices_of(session, september_work.id)[0].subtotal == Decimal("1200.00")

    def test_zero_price_skips_without_failure(self, session, practice, work_service):
        practice.template("GSTR-1", offset_type="days", offset_value=10)
        work = practice.create_work(
            work_service,
            cadence="monthly",
            start_date=date(2025, 9, 1),
            period_calculation_type="current_period",
            billing_amount=Decimal("0"),
        )
        (period,) = periods_of(session, work.id)
        complete_period(session, work_service, period)

        assert invoices_of(session, work.id) == []
        assert period.is_billed is False
        assert work_service.failures.list_open(entity_id=period.id) == []

    def test_missing_price_is_recorded(self, session, practice, work_service, september_work):
        practice.service.default_price = None
        session.flush()
        (period,) = periods_of(session, september_work.id)

        complete_period(session, work_service, period)

        assert invoices_of(session, september_work.id) == []
        assert period.status == PeriodStatus.COMPLETED.value
        (failure,) = work_service.failures.list_open(entity_id=period.id)
        assert failure.error_code == "MISSING_PRICE"
        assert failure.stage is PipelineStage.INVOICE_GENERATION
        assert failure.failure_type is FailureType.CONFIGURATION

    def test_tax_rate_defaults_to_zero(self, session, practice, work_service, september_work):
        practice.service.tax_rate = Decimal("0")
        session.flush()
        complete_period(session, work_service, periods_of(session, september_work.id)[0])
        invoice = invoices_of(session, september_work.id)[0]
        assert invoice.tax_amount == Decimal("0.00")
        assert invoice.total_amount == Decimal("1000.00")


class TestIncomeAccount:

    def test_tenant_default_used_when_service_unmapped(self, session, practice, work_service, september_work):
        practice.service.income_account_id = None
        session.flush()
        complete_period(session, work_service, periods_of(session, september_work.id)[0])
        assert invoices_of(session, september_work.id)[0].income_account_id == practice.org_income_account_id

    def test_unmapped_income_account_then_fixed(self, session, practice, work_service, september_work):
        practice.service.income_account_id = None
        practice.tenant_settings.default_income_account_id = None
        session.flush()
        (period,) = periods_of(session, september_work.id)

        complete_period(session, work_service, period)

        assert period.status == PeriodStatus.COMPLETED.value
        assert invoices_of(session, september_work.id) == []
        (failure,) = work_service.failures.list_open(entity_id=period.id)
        assert failure.error_code == "UNMAPPED_INCOME_ACCOUNT"
        assert failure.failure_type is FailureType.CONFIGURATION

        practice.service.income_account_id = practice.income_account_id
        session.flush()
        result = work_service.bus.publish(PeriodCompleted(period_id=period.id, work_id=september_work.id))

        assert result.ok
        assert len(invoices_of(session, september_work.id)) == 1
        assert work_service.failures.list_open(entity_id=period.id) == []


# =============================================================================
# Idempotence and auto-billing
# =============================================================================


class TestIdempotence:

    def test_reopen_keeps_invoice_and_recomplete_reuses_it(self, session, work_service, september_work):
        (period,) = periods_of(session, september_work.id)
        complete_period(session, work_service, period)
        (invoice,) = invoices_of(session, september_work.id)

        complete_period(session, work_service, period, status=TaskStatus.PENDING)
        assert period.status == PeriodStatus.ACTIVE.value
        assert invoices_of(session, september_work.id) == [invoice]

        complete_period(session, work_service, period)
        assert invoices_of(session, september_work.id) == [invoice]

    def test_direct_regeneration_returns_existing(self, session, work_service, september_work):
        (period,) = periods_of(session, september_work.id)
        complete_period(session, work_service, period)
        (invoice,) = invoices_of(session, september_work.id)
        assert work_service.invoices.generate_for_period(period.id) is invoice
        count = session.execute(select(func.count(Invoice.id))).scalar_one()
        assert count == 1

    def test_auto_bill_disabled(self, session, practice, work_service):
        practice.template("GSTR-1", offset_type="days", offset_value=10)
        work = practice.create_work(
            work_service,
            cadence="monthly",
            start_date=date(2025, 9, 1),
            period_calculation_type="current_period",
            auto_bill=False,
        )
        (period,) = periods_of(session, work.id)
        complete_period(session, work_service, period)
        assert invoices_of(session, work.id) == []
        assert period.is_billed is False


# =============================================================================
# Nested periods
# =============================================================================


class TestNestedPeriodInvoice:

    @pytest.fixture
    def quarterly_payroll(self, practice, work_service, clock):
        practice.template("Payroll", cadence="monthly", offset_type="days", offset_value=10)
        clock.set_date(date(2025, 10, 5))
        return practice.create_work(
            work_service,
            title="Quarterly payroll",
            cadence="quarterly",
            start_date=date(2025, 7, 1),
            fy_start_month=4,
            period_calculation_type="current_period",
        )

    def test_quarter_waits_for_its_last_monthly_task(
        self, session, clock, work_service, quarterly_payroll, captured_logs
    ):
        (quarter,) = periods_of(session, quarterly_payroll.id)
        assert quarter.total_tasks == 2
        complete_period(session, work_service, quarter)

        assert quarter.all_tasks_completed is True
        assert invoices_of(session, quarterly_payroll.id) == []
        (deferred,) = [r for r in captured_logs() if r["message"] == "invoice_deferred_tasks_pending"]
        assert deferred["pending_tasks"] == 1
        assert deferred["next_due_date"] == "2025-10-10"

        clock.set_date(date(2025, 10, 15))
        work_service.generator.generate_next_period(quarterly_payroll.id)
        assert quarter.total_tasks == 3
        assert quarter.status == PeriodStatus.ACTIVE.value
        assert invoices_of(session, quarterly_payroll.id) == []

        complete_period(session, work_service, quarter)

        (invoice,) = invoices_of(session, quarterly_payroll.id)
        assert invoice.period_id == quarter.id
        assert invoice.total_amount == Decimal("1180.00")
        assert quarter.is_billed is True

    def test_direct_call_defers_without_failure(self, session, work_service, quarterly_payroll):
        (quarter,) = periods_of(session, quarterly_payroll.id)
        complete_period(session, work_service, quarter)

        assert work_service.invoices.generate_for_period(quarter.id) is None
        assert work_service.failures.list_open() == []


# =============================================================================
# One-time works
# =============================================================================


class TestOneTimeWork:

    def test_completed_work_is_invoiced(self, session, practice, work_service):
        practice.template("Draft MoA", sort_order=1)
        practice.template("File incorporation", sort_order=2)
        work = practice.create_work(
            work_service,
            is_recurring=False,
            title="Company setup",
            due_date=date(2025, 10, 31),
        )
        tasks = session.execute(select(WorkTask).where(WorkTask.work_id == work.id)).scalars().all()
        assert {t.due_date for t in tasks} == {date(2025, 10, 31)}
        for task in tasks:
            work_service.set_work_task_status(task.id, TaskStatus.COMPLETED)

        (invoice,) = invoices_of(session, work.id)
        assert invoice.period_id is None
        assert invoice.notes == "Company setup"
        assert invoice.lines[0].description == "GST Returns - Company setup"
        assert work.billing_status == BillingStatus.BILLED.value
        assert work.invoice_id == invoice.id

    def test_recurring_work_not_invoiced_as_one_time(self, work_service, monthly_work):
        assert work_service.invoices.generate_for_work(monthly_work.id) is None
