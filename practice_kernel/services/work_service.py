"""
WorkService -- command surface of the scheduler and billing pipeline.

Responsibility:
    Executes the user-facing mutations (create a work, change a task's
    status, delete a task, change an invoice's status, tick a document,
    change a schedule) and publishes the domain events that drive the
    downstream stages.

Architecture position:
    Kernel > Services -- imperative shell, outermost service.
    Owns one DomainEventBus wired as:

        WorkCreated           -> PeriodGenerator.backfill
        PeriodCompleted       -> InvoiceGenerator.generate_for_period
        WorkCompleted         -> InvoiceGenerator.generate_for_work
        InvoiceStatusChanged  -> LedgerPoster.apply_status_change

Invariants enforced:
    - The user's mutation always survives a downstream stage failure;
      the failure is persisted by the bus instead.
    - Completion events are published only on the edge into completed.
    - Schedule fields are immutable once periods exist; changing them
      requires ``regenerate_periods``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Mapping
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from practice_config import PracticeSettings, get_active_settings
from practice_kernel.domain.clock import Clock
from practice_kernel.domain.events import (
    InvoiceStatusChanged,
    PeriodCompleted,
    WorkCompleted,
    WorkCreated,
)
from practice_kernel.domain.types import (
    Cadence,
    InvoiceStatus,
    PeriodCalculationType,
    PipelineStage,
    TaskStatus,
    validate_month,
    weekday_index,
)
from practice_kernel.exceptions import (
    CustomerNotFoundError,
    DocumentNotFoundError,
    InvalidScheduleError,
    InvoiceNotFoundError,
    RecurrenceLockedError,
    ServiceNotFoundError,
    TaskNotFoundError,
    WorkNotFoundError,
)
from practice_kernel.logging_config import LogContext, get_logger
from practice_kernel.models.catalog import Customer, Service, ServiceTaskTemplate
from practice_kernel.models.invoice import Invoice
from practice_kernel.models.period import (
    DismissedPeriodTask,
    PeriodDocument,
    PeriodTask,
    WorkPeriod,
)
from practice_kernel.models.work import Work, WorkDocument, WorkTask, WorkTaskConfig
from practice_kernel.services.base import BaseService
from practice_kernel.services.completion_tracker import CompletionResult, CompletionTracker
from practice_kernel.services.event_bus import DomainEventBus, PublishResult
from practice_kernel.services.failure_recorder import FailureRecorder
from practice_kernel.services.invoice_generator import InvoiceGenerator
from practice_kernel.services.ledger_poster import LedgerPoster
from practice_kernel.services.period_generator import GenerationResult, PeriodGenerator

logger = get_logger("services.work_service")

SCHEDULE_FIELDS = (
    "cadence",
    "fy_start_month",
    "week_start_day",
    "period_calculation_type",
    "start_date",
)
OPEN_FIELDS = ("title", "end_date", "auto_bill", "billing_amount")

_TASK_OVERRIDE_FIELDS = (
    "cadence",
    "offset_type",
    "offset_value",
    "offset_months",
    "exact_due_date",
    "anchor_day",
    "anchor_month",
    "due_date_overrides",
    "is_active",
)


def _storable(value: Any) -> Any:
    """Enum members as their values; override maps keyed by ISO dates."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): str(v) for k, v in value.items()}
    return value


class WorkService(BaseService):

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        settings: PracticeSettings | None = None,
    ):
        super().__init__(session, clock, actor_id)
        self.settings = settings or get_active_settings()
        self.failures = FailureRecorder(session, self.clock)
        self.tracker = CompletionTracker(session, self.clock)
        self.generator = PeriodGenerator(
            session, self.clock, self.actor_id, self.settings, tracker=self.tracker
        )
        self.invoices = InvoiceGenerator(
            session, self.clock, self.actor_id, self.settings, planner=self.generator
        )
        self.ledger = LedgerPoster(session, self.clock, self.actor_id, self.settings)

        self.bus = DomainEventBus(session, self.failures)
        self.bus.subscribe(
            WorkCreated, self.generator.on_work_created, PipelineStage.PERIOD_GENERATION
        )
        self.bus.subscribe(
            PeriodCompleted, self.invoices.on_period_completed, PipelineStage.INVOICE_GENERATION
        )
        self.bus.subscribe(
            WorkCompleted, self.invoices.on_work_completed, PipelineStage.INVOICE_GENERATION
        )
        self.bus.subscribe(
            InvoiceStatusChanged, self.ledger.on_invoice_status_changed, PipelineStage.LEDGER_POSTING
        )

    # ------------------------------------------------------------------
    # Works
    # ------------------------------------------------------------------

    def create_work(
        self,
        *,
        tenant_id: UUID,
        customer_id: UUID,
        service_id: UUID,
        title: str,
        is_recurring: bool = True,
        cadence: Cadence | str | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        due_date: date | None = None,
        fy_start_month: int | None = None,
        week_start_day: str | None = None,
        period_calculation_type: PeriodCalculationType | str = PeriodCalculationType.PREVIOUS_PERIOD,
        auto_bill: bool | None = None,
        billing_amount: Decimal | None = None,
        documents: Iterable[str] = (),
        task_overrides: Mapping[UUID, Mapping[str, Any]] | None = None,
    ) -> Work:
        """
        Create a work, its document checklist and overrides, then publish
        WorkCreated (which backfills periods for a recurring work).

        A one-time work gets one task per active template immediately.

        Raises:
            CustomerNotFoundError / ServiceNotFoundError: unknown ids.
            InvalidScheduleError: recurring work without cadence or start
                date, or an invalid month or weekday.
        """
        if self.session.get(Customer, customer_id) is None:
            raise CustomerNotFoundError(customer_id)
        if self.session.get(Service, service_id) is None:
            raise ServiceNotFoundError(service_id)

        fy_start_month = validate_month(
            "fy_start_month", fy_start_month or self.settings.fiscal_year_start_month
        )
        week_start_day = week_start_day or self.settings.week_start_day
        weekday_index(week_start_day)
        calc_type = PeriodCalculationType(period_calculation_type)

        parsed_cadence = Cadence.parse(cadence) if cadence else None
        if is_recurring:
            if parsed_cadence is None:
                raise InvalidScheduleError("cadence", cadence, "recurring work needs a cadence")
            if start_date is None:
                raise InvalidScheduleError("start_date", None, "recurring work needs a start date")

        work = Work(
            tenant_id=tenant_id,
            customer_id=customer_id,
            service_id=service_id,
            title=title,
            is_recurring=is_recurring,
            cadence=parsed_cadence.value if parsed_cadence else None,
            fy_start_month=fy_start_month,
            week_start_day=week_start_day.strip().lower(),
            period_calculation_type=calc_type.value,
            start_date=start_date,
            end_date=end_date,
            due_date=due_date,
            auto_bill=auto_bill,
            billing_amount=billing_amount,
            created_by_id=self.actor_id,
        )
        self.session.add(work)
        self.session.flush()

        for position, name in enumerate(documents):
            self.session.add(
                WorkDocument(work_id=work.id, name=name, sort_order=position, created_by_id=self.actor_id)
            )
        for template_id, fields in (task_overrides or {}).items():
            unknown = set(fields) - set(_TASK_OVERRIDE_FIELDS)
            if unknown:
                raise InvalidScheduleError("task_overrides", sorted(unknown), "unknown override field")
            self.session.add(
                WorkTaskConfig(
                    work_id=work.id,
                    template_id=template_id,
                    created_by_id=self.actor_id,
                    **{name: _storable(value) for name, value in fields.items()},
                )
            )
        self.session.flush()

        if not is_recurring:
            self._create_one_time_tasks(work)

        with LogContext.bind(work_id=work.id):
            logger.info(
                "work_created",
                extra={
                    "work_id": work.id,
                    "is_recurring": is_recurring,
                    "cadence": work.cadence,
                    "start_date": start_date,
                },
            )
            self.bus.publish(WorkCreated(work_id=work.id))
        return work

    def _create_one_time_tasks(self, work: Work) -> None:
        templates = self.session.execute(
            select(ServiceTaskTemplate)
            .where(ServiceTaskTemplate.service_id == work.service_id)
            .order_by(ServiceTaskTemplate.sort_order, ServiceTaskTemplate.title)
        ).scalars().all()
        configs = {
            c.template_id: c
            for c in self.session.execute(
                select(WorkTaskConfig).where(WorkTaskConfig.work_id == work.id)
            ).scalars()
        }
        created = 0
        for template in templates:
            rule = template.to_rule(configs.get(template.id))
            if not rule.is_active:
                continue
            _, was_created = self._insert_or_get(
                WorkTask,
                key={"work_id": work.id, "template_id": template.id},
                values={
                    "title": rule.title,
                    "description": rule.description,
                    "due_date": rule.exact_due_date or work.due_date,
                    "status": TaskStatus.PENDING.value,
                    "sort_order": rule.sort_order,
                },
            )
            created += int(was_created)
        logger.debug("work_tasks_created", extra={"work_id": work.id, "count": created})

    # ------------------------------------------------------------------
    # Task status
    # ------------------------------------------------------------------

    def set_period_task_status(self, task_id: UUID, status: TaskStatus | str) -> CompletionResult:
        """
        Change a period task's status and recount its period.

        Publishes PeriodCompleted when this change completes the period.
        """
        status = TaskStatus.parse(status)
        task = self.session.get(PeriodTask, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        period = self.session.get(WorkPeriod, task.period_id)
        with LogContext.bind(work_id=period.work_id, period_id=period.id):
            old_status = task.status
            task.status = status.value
            task.completed_at = self.clock.now() if status is TaskStatus.COMPLETED else None
            task.updated_by_id = self.actor_id
            self.session.flush()
            logger.info(
                "task_status_changed",
                extra={"task_id": task.id, "old_status": old_status, "new_status": status.value},
            )

            result = self.tracker.recompute_period(period.id)
            if result.became_complete:
                self.bus.publish(PeriodCompleted(period_id=period.id, work_id=period.work_id))
            return result

    def set_work_task_status(self, task_id: UUID, status: TaskStatus | str) -> CompletionResult:
        """Change a one-time work task's status; publishes WorkCompleted on completion."""
        status = TaskStatus.parse(status)
        task = self.session.get(WorkTask, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        with LogContext.bind(work_id=task.work_id):
            old_status = task.status
            task.status = status.value
            task.completed_at = self.clock.now() if status is TaskStatus.COMPLETED else None
            task.updated_by_id = self.actor_id
            self.session.flush()
            logger.info(
                "task_status_changed",
                extra={"task_id": task.id, "old_status": old_status, "new_status": status.value},
            )

            result = self.tracker.recompute_work(task.work_id)
            if result.became_complete:
                self.bus.publish(WorkCompleted(work_id=task.work_id))
            return result

    def delete_period_task(self, task_id: UUID) -> CompletionResult:
        """Delete a period task for good; generation will not plan it again."""
        task = self.session.get(PeriodTask, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        period = self.session.get(WorkPeriod, task.period_id)

        with LogContext.bind(work_id=period.work_id, period_id=period.id):
            self._insert_or_get(
                DismissedPeriodTask,
                key={
                    "period_id": period.id,
                    "template_id": task.template_id,
                    "due_date": task.due_date,
                },
            )
            self.session.delete(task)
            self.session.flush()
            logger.info("task_deleted", extra={"task_id": task_id})
            result = self.tracker.recompute_period(period.id)
            if result.became_complete:
                self.bus.publish(PeriodCompleted(period_id=period.id, work_id=period.work_id))
            return result

    # ------------------------------------------------------------------
    # Invoices and documents
    # ------------------------------------------------------------------

    def change_invoice_status(
        self,
        invoice_id: UUID,
        status: InvoiceStatus | str,
    ) -> PublishResult | None:
        """
        Set an invoice's status and publish InvoiceStatusChanged.

        Returns None when the status is unchanged.
        """
        new_status = InvoiceStatus.parse(status)
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)

        old_status = InvoiceStatus.parse(invoice.status)
        with LogContext.bind(invoice_id=invoice.id, work_id=invoice.work_id):
            if old_status is new_status:
                logger.debug("invoice_status_unchanged", extra={"status": new_status.value})
                return None
            invoice.status = new_status.value
            invoice.updated_by_id = self.actor_id
            self.session.flush()
            logger.info(
                "invoice_status_changed",
                extra={"old_status": old_status.value, "new_status": new_status.value},
            )
            return self.bus.publish(
                InvoiceStatusChanged(
                    invoice_id=invoice.id, old_status=old_status, new_status=new_status
                )
            )

    def mark_document_collected(self, period_document_id: UUID, collected: bool = True) -> PeriodDocument:
        document = self.session.get(PeriodDocument, period_document_id)
        if document is None:
            raise DocumentNotFoundError(period_document_id)
        document.is_collected = collected
        document.collected_at = self.clock.now() if collected else None
        document.updated_by_id = self.actor_id
        self.session.flush()
        logger.info(
            "period_document_collected" if collected else "period_document_uncollected",
            extra={"period_document_id": document.id, "period_id": document.period_id},
        )
        return document

    # ------------------------------------------------------------------
    # Schedule changes
    # ------------------------------------------------------------------

    def update_schedule(self, work_id: UUID, **changes: Any) -> Work:
        """
        Update work fields.

        Raises:
            RecurrenceLockedError: a schedule field would change while the
                work already has periods.
            InvalidScheduleError: unknown field or invalid value.
        """
        work = self._load_work(work_id)
        changed = self._changed_schedule_fields(work, changes)
        if changed:
            period_count = self._period_count(work.id)
            if period_count:
                logger.warning(
                    "schedule_change_rejected",
                    extra={"work_id": work.id, "fields": changed, "period_count": period_count},
                )
                raise RecurrenceLockedError(work.id, changed, period_count)
        self._apply_changes(work, changes)
        return work

    def regenerate_periods(self, work_id: UUID, **changes: Any) -> GenerationResult:
        """
        Drop the work's unbilled periods, apply ``changes`` and backfill.

        Billed periods, their tasks and their invoices are kept.
        """
        work = self._load_work(work_id)
        self._changed_schedule_fields(work, changes)

        with LogContext.bind(work_id=work.id):
            unbilled = self.session.execute(
                select(WorkPeriod.id).where(
                    WorkPeriod.work_id == work.id,
                    WorkPeriod.is_billed.is_(False),
                    WorkPeriod.invoice_id.is_(None),
                )
            ).scalars().all()
            if unbilled:
                self.session.execute(delete(PeriodTask).where(PeriodTask.period_id.in_(unbilled)))
                self.session.execute(
                    delete(DismissedPeriodTask).where(DismissedPeriodTask.period_id.in_(unbilled))
                )
                self.session.execute(
                    delete(PeriodDocument).where(PeriodDocument.period_id.in_(unbilled))
                )
                self.session.execute(delete(WorkPeriod).where(WorkPeriod.id.in_(unbilled)))
                self.session.expire_all()

            work = self._load_work(work_id)
            self._apply_changes(work, changes)
            logger.info(
                "periods_regenerating",
                extra={"work_id": work.id, "periods_removed": len(unbilled), "changes": sorted(changes)},
            )
            return self.generator.backfill(work.id)

    def _changed_schedule_fields(self, work: Work, changes: Mapping[str, Any]) -> list[str]:
        changed = []
        for name, value in changes.items():
            if name not in SCHEDULE_FIELDS and name not in OPEN_FIELDS:
                raise InvalidScheduleError(name, value, "not an updatable work field")
            if name in SCHEDULE_FIELDS and self._normalize(name, value) != getattr(work, name):
                changed.append(name)
        return changed

    def _apply_changes(self, work: Work, changes: Mapping[str, Any]) -> None:
        for name, value in changes.items():
            setattr(work, name, self._normalize(name, value))
        work.updated_by_id = self.actor_id
        self.session.flush()
        if changes:
            logger.info("work_updated", extra={"work_id": work.id, "fields": sorted(changes)})

    @staticmethod
    def _normalize(name: str, value: Any) -> Any:
        if value is None:
            return None
        if name == "cadence":
            return Cadence.parse(value).value
        if name == "fy_start_month":
            return validate_month(name, value)
        if name == "week_start_day":
            weekday_index(value)
            return str(value).strip().lower()
        if name == "period_calculation_type":
            return PeriodCalculationType(value).value
        return value

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_work(self, work_id: UUID) -> Work:
        work = self.session.get(Work, work_id)
        if work is None:
            raise WorkNotFoundError(work_id)
        return work

    def _period_count(self, work_id: UUID) -> int:
        return self.session.execute(
            select(func.count(WorkPeriod.id)).where(WorkPeriod.work_id == work_id)
        ).scalar_one()
