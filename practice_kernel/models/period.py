"""
Module: practice_kernel.models.period
Responsibility: ORM persistence for materialized periods of recurring
    works, the task instances inside them, and the per-period document
    checklist.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - At most one period per (work, period_start_date)
      (uq_work_periods_work_start).
    - At most one task per (period, template, due_date)
      (uq_period_tasks_period_template_due).  The due date is part of the
      key because a monthly template yields one task per month inside a
      quarterly or yearly period.
    - At most one checklist row per (period, work document)
      (uq_period_documents_period_document).
    - A deleted task leaves a DismissedPeriodTask with the same key and
      is never generated again for that period.
    - all_tasks_completed == (total_tasks > 0 and total_tasks ==
      completed_tasks), maintained by CompletionTracker.

Failure modes:
    - IntegrityError on a duplicate key; the generator absorbs it as
      "already exists".
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from practice_kernel.db.base import TrackedBase
from practice_kernel.domain.types import Cadence, PeriodStatus, PeriodWindow, TaskStatus


class WorkPeriod(TrackedBase):
    """
    One materialized occurrence of a recurring work.

    Never deleted by normal operation; only WorkService.regenerate_periods
    removes unbilled periods.
    """

    __tablename__ = "work_periods"

    __table_args__ = (
        UniqueConstraint("work_id", "period_start_date", name="uq_work_periods_work_start"),
        Index("idx_work_periods_work_end", "work_id", "period_end_date"),
        Index("idx_work_periods_status", "status"),
    )

    work_id: Mapped[UUID] = mapped_column(ForeignKey("works.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    cadence: Mapped[str] = mapped_column(String(20), nullable=False)
    period_start_date: Mapped[date] = mapped_column(nullable=False)
    period_end_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=PeriodStatus.PENDING.value)

    total_tasks: Mapped[int] = mapped_column(Integer, default=0)
    completed_tasks: Mapped[int] = mapped_column(Integer, default=0)
    all_tasks_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    billing_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    is_billed: Mapped[bool] = mapped_column(Boolean, default=False)
    invoice_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def contains_date(self, check_date: date) -> bool:
        return self.period_start_date <= check_date <= self.period_end_date

    def __repr__(self) -> str:
        return f"<WorkPeriod {self.name} [{self.period_start_date} - {self.period_end_date}]>"


class PeriodTask(TrackedBase):
    """A dated task instance inside a period, derived from a template."""

    __tablename__ = "period_tasks"

    __table_args__ = (
        UniqueConstraint(
            "period_id", "template_id", "due_date",
            name="uq_period_tasks_period_template_due",
        ),
        Index("idx_period_tasks_period_status", "period_id", "status"),
    )

    period_id: Mapped[UUID] = mapped_column(ForeignKey("work_periods.id"), nullable=False)
    template_id: Mapped[UUID] = mapped_column(
        ForeignKey("service_task_templates.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    priority: Mapped[str | None] = mapped_column(String(20), nullable=True)
    estimated_hours: Mapped[Decimal | None] = mapped_column(nullable=True)
    due_date: Mapped[date] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=TaskStatus.PENDING.value)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<PeriodTask {self.title} due {self.due_date} ({self.status})>"


class DismissedPeriodTask(TrackedBase):
    """
    Marker left by deleting a period task.

    Generation skips a (period, template, due_date) key that carries a
    marker, so a deleted task is not planned again.
    """

    __tablename__ = "dismissed_period_tasks"

    __table_args__ = (
        UniqueConstraint(
            "period_id", "template_id", "due_date",
            name="uq_dismissed_period_tasks_key",
        ),
    )

    period_id: Mapped[UUID] = mapped_column(ForeignKey("work_periods.id"), nullable=False)
    template_id: Mapped[UUID] = mapped_column(
        ForeignKey("service_task_templates.id"), nullable=False
    )
    due_date: Mapped[date] = mapped_column(nullable=False)


class PeriodDocument(TrackedBase):
    """Per-period copy of a work document with its own collected flag."""

    __tablename__ = "period_documents"

    __table_args__ = (
        UniqueConstraint(
            "period_id", "work_document_id",
            name="uq_period_documents_period_document",
        ),
    )

    period_id: Mapped[UUID] = mapped_column(ForeignKey("work_periods.id"), nullable=False)
    work_document_id: Mapped[UUID] = mapped_column(
        ForeignKey("work_documents.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)
    is_collected: Mapped[bool] = mapped_column(Boolean, default=False)
    collected_at: Mapped[datetime | None] = mapped_column(nullable=True)


def window_of(period: WorkPeriod) -> PeriodWindow:
    """Rebuild the engine window of a stored period."""
    return PeriodWindow(
        start=period.period_start_date,
        end=period.period_end_date,
        name=period.name,
        cadence=Cadence.parse(period.cadence),
    )
