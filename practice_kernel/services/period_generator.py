"""
PeriodGenerator -- materializes periods, tasks and per-period document
checklists for recurring works.

Responsibility:
    Builds the effective task rules of a work (templates plus per-work
    overrides), asks the pure planner which periods and tasks are
    eligible as of the clock's today, and inserts whatever is missing.

Architecture position:
    Kernel > Services -- imperative shell.
    Subscribed to WorkCreated (backfill) on the DomainEventBus and called
    by PeriodSweepScheduler (ongoing generation).  InvoiceGenerator asks
    it which tasks a period still lacks before billing.

Invariants enforced:
    - Idempotence: at most one period per (work, period_start_date) and
      one task per (period, template, due_date).  Both keys are unique in
      storage and inserted through ``_insert_or_get``.
    - Documents are copied once per (period, work document).
    - Keys of deleted tasks (DismissedPeriodTask) are never planned again.
    - Aggregates of every touched period are recounted by
      CompletionTracker.

Failure modes:
    - WorkNotFoundError: unknown work id.
    - InvalidScheduleError: recurring work without cadence or start date.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from practice_config import PracticeSettings, get_active_settings
from practice_engines.eligibility import expected_tasks, plan_periods
from practice_engines.periods import first_window
from practice_kernel.domain.clock import Clock
from practice_kernel.domain.types import (
    Cadence,
    PeriodCalculationType,
    PeriodPlan,
    PeriodStatus,
    PeriodWindow,
    TaskCandidate,
    TaskRule,
    TaskStatus,
)
from practice_kernel.exceptions import InvalidScheduleError, WorkNotFoundError
from practice_kernel.logging_config import LogContext, get_logger
from practice_kernel.models.catalog import ServiceTaskTemplate
from practice_kernel.models.period import (
    DismissedPeriodTask,
    PeriodDocument,
    PeriodTask,
    WorkPeriod,
    window_of,
)
from practice_kernel.models.work import Work, WorkDocument, WorkTaskConfig
from practice_kernel.services.base import BaseService
from practice_kernel.services.completion_tracker import CompletionTracker

logger = get_logger("services.period_generator")


@dataclass
class GenerationResult:
    """What one generator run inserted."""

    work_id: UUID
    periods_created: int = 0
    tasks_created: int = 0
    documents_created: int = 0
    period_ids: list[UUID] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.periods_created or self.tasks_created or self.documents_created)


class PeriodGenerator(BaseService):
    """
    Contract:
        ``backfill`` and ``generate_next_period`` both plan from the
        work's first period.  Both may be re-run at any time and only add
        what is missing.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        settings: PracticeSettings | None = None,
        tracker: CompletionTracker | None = None,
    ):
        super().__init__(session, clock, actor_id)
        self.settings = settings or get_active_settings()
        self.tracker = tracker or CompletionTracker(session, self.clock)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def backfill(self, work_id: UUID) -> GenerationResult:
        """Generate every eligible period from the work's first period through today."""
        work = self._load_work(work_id)
        if not work.is_recurring:
            logger.debug("work_not_recurring", extra={"work_id": work_id})
            return GenerationResult(work_id=work_id)

        first = self._first_window(work)
        return self._generate(work, first, mode="backfill")

    def generate_next_period(self, work_id: UUID) -> GenerationResult:
        """
        Ongoing generation for an existing work.

        Plans from the work's first window on every run: a task of an
        old, already completed period can still become due (a rule with a
        long offset), and planning only inserts what is missing.
        """
        work = self._load_work(work_id)
        if not work.is_recurring:
            return GenerationResult(work_id=work_id)

        has_periods = self.session.execute(
            select(WorkPeriod.id).where(WorkPeriod.work_id == work.id).limit(1)
        ).first() is not None
        return self._generate(
            work, self._first_window(work), mode="ongoing" if has_periods else "backfill"
        )

    def on_work_created(self, event) -> None:
        self.backfill(event.work_id)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def effective_rules(self, work: Work) -> list[TaskRule]:
        """Templates of the work's service with the work's overrides applied."""
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
        return [t.to_rule(configs.get(t.id)) for t in templates]

    def missing_tasks(self, period: WorkPeriod) -> list[TaskCandidate]:
        """
        Tasks the period will eventually hold that are not stored yet.

        Includes tasks whose due date is still in the future, so a
        quarter holding only its first two monthly tasks is not complete.
        """
        work = self._load_work(period.work_id)
        expected = expected_tasks(
            window_of(period),
            self.effective_rules(work),
            self._cadence(work),
            work_start=work.start_date,
            fy_start_month=self._fy_start_month(work),
            week_start_day=self._week_start_day(work),
            fallback_offset_days=self.settings.fallback_due_offset_days,
        )
        stored = {
            (template_id, due_date)
            for template_id, due_date in self.session.execute(
                select(PeriodTask.template_id, PeriodTask.due_date).where(
                    PeriodTask.period_id == period.id
                )
            )
        }
        stored |= self._dismissed_keys(period.id)
        return [c for c in expected if (c.template_id, c.due_date) not in stored]

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    def _generate(self, work: Work, first: PeriodWindow, mode: str) -> GenerationResult:
        today = self.clock.today()
        with LogContext.bind(work_id=work.id):
            plans = plan_periods(
                first=first,
                rules=self.effective_rules(work),
                work_cadence=self._cadence(work),
                today=today,
                work_start=work.start_date,
                work_end=work.end_date,
                fy_start_month=self._fy_start_month(work),
                week_start_day=self._week_start_day(work),
                fallback_offset_days=self.settings.fallback_due_offset_days,
            )

            result = GenerationResult(work_id=work.id)
            documents = self.session.execute(
                select(WorkDocument)
                .where(WorkDocument.work_id == work.id)
                .order_by(WorkDocument.sort_order, WorkDocument.name)
            ).scalars().all()

            for plan in plans:
                self._materialize(work, plan, documents, result)

            logger.info(
                "period_generation_completed",
                extra={
                    "work_id": work.id,
                    "mode": mode,
                    "first_start": first.start,
                    "today": today,
                    "periods_created": result.periods_created,
                    "tasks_created": result.tasks_created,
                },
            )
            return result

    def _materialize(
        self,
        work: Work,
        plan: PeriodPlan,
        documents: list[WorkDocument],
        result: GenerationResult,
    ) -> None:
        window = plan.window
        period, created = self._insert_or_get(
            WorkPeriod,
            key={"work_id": work.id, "period_start_date": window.start},
            values={
                "name": window.name,
                "cadence": window.cadence.value,
                "period_end_date": window.end,
                "status": PeriodStatus.PENDING.value,
                "billing_amount": work.billing_amount,
            },
        )
        if created:
            result.periods_created += 1
            logger.info(
                "period_created",
                extra={
                    "work_id": work.id,
                    "period_id": period.id,
                    "period_name": window.name,
                    "period_start": window.start,
                    "period_end": window.end,
                },
            )
            for document in documents:
                _, doc_created = self._insert_or_get(
                    PeriodDocument,
                    key={"period_id": period.id, "work_document_id": document.id},
                    values={
                        "name": document.name,
                        "is_required": document.is_required,
                        "is_collected": False,
                    },
                )
                result.documents_created += int(doc_created)

        dismissed = set() if created else self._dismissed_keys(period.id)
        tasks_added = 0
        for candidate in plan.tasks:
            if (candidate.template_id, candidate.due_date) in dismissed:
                continue
            task, task_created = self._insert_or_get(
                PeriodTask,
                key={
                    "period_id": period.id,
                    "template_id": candidate.template_id,
                    "due_date": candidate.due_date,
                },
                values={
                    "title": candidate.title,
                    "description": candidate.description,
                    "priority": candidate.priority,
                    "estimated_hours": candidate.estimated_hours,
                    "status": TaskStatus.PENDING.value,
                    "sort_order": candidate.sort_order,
                },
            )
            if task_created:
                tasks_added += 1
                logger.debug(
                    "task_created",
                    extra={
                        "period_id": period.id,
                        "task_id": task.id,
                        "template_id": candidate.template_id,
                        "due_date": candidate.due_date,
                        "title": candidate.title,
                    },
                )

        result.tasks_created += tasks_added
        if created or tasks_added:
            result.period_ids.append(period.id)
            self.tracker.recompute_period(period.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_work(self, work_id: UUID) -> Work:
        work = self.session.get(Work, work_id)
        if work is None:
            raise WorkNotFoundError(work_id)
        return work

    def _dismissed_keys(self, period_id: UUID) -> set[tuple[UUID, date]]:
        return {
            (template_id, due_date)
            for template_id, due_date in self.session.execute(
                select(DismissedPeriodTask.template_id, DismissedPeriodTask.due_date).where(
                    DismissedPeriodTask.period_id == period_id
                )
            )
        }

    def _cadence(self, work: Work) -> Cadence:
        if not work.cadence:
            raise InvalidScheduleError("cadence", None, "recurring work has no cadence")
        return Cadence.parse(work.cadence)

    def _fy_start_month(self, work: Work) -> int:
        return work.fy_start_month or self.settings.fiscal_year_start_month

    def _week_start_day(self, work: Work) -> str:
        return work.week_start_day or self.settings.week_start_day

    def _first_window(self, work: Work) -> PeriodWindow:
        if work.start_date is None:
            raise InvalidScheduleError("start_date", None, "recurring work has no start date")
        return first_window(
            work.start_date,
            self._cadence(work),
            PeriodCalculationType(
                work.period_calculation_type or PeriodCalculationType.PREVIOUS_PERIOD.value
            ),
            self._fy_start_month(work),
            self._week_start_day(work),
        )

