"""
Module: practice_kernel.models.work
Responsibility: ORM persistence for works (client engagements), their
    per-work task overrides, their document checklist, and the task rows
    of one-time works.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - One WorkTaskConfig per (work, template) (uq_work_task_config).
    - One WorkTask per (work, template) (uq_work_tasks_template).
    - Schedule fields are not changed once periods exist; enforced by
      WorkService.update_schedule, not by the table.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from practice_kernel.db.base import TrackedBase
from practice_kernel.domain.types import (
    BillingStatus,
    Cadence,
    PeriodCalculationType,
    TaskStatus,
)

WORK_ACTIVE = "active"
WORK_COMPLETED = "completed"


class Work(TrackedBase):
    """
    A recurring or one-time engagement for a customer.

    Guarantees:
        - auto_bill None is treated as enabled.
        - cadence is set for recurring works and ignored for one-time works.
    """

    __tablename__ = "works"

    __table_args__ = (
        Index("idx_works_tenant", "tenant_id"),
        Index("idx_works_recurring_status", "is_recurring", "status"),
    )

    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    customer_id: Mapped[UUID] = mapped_column(ForeignKey("customers.id"), nullable=False)
    service_id: Mapped[UUID] = mapped_column(ForeignKey("services.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    is_recurring: Mapped[bool] = mapped_column(Boolean, default=True)
    cadence: Mapped[str | None] = mapped_column(String(20), nullable=True)
    fy_start_month: Mapped[int] = mapped_column(Integer, default=4)
    week_start_day: Mapped[str] = mapped_column(String(10), default="monday")
    period_calculation_type: Mapped[str] = mapped_column(
        String(20), default=PeriodCalculationType.PREVIOUS_PERIOD.value
    )
    start_date: Mapped[date | None] = mapped_column(nullable=True)
    end_date: Mapped[date | None] = mapped_column(nullable=True)
    due_date: Mapped[date | None] = mapped_column(nullable=True)

    auto_bill: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    billing_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=WORK_ACTIVE)
    billing_status: Mapped[str] = mapped_column(String(20), default=BillingStatus.UNBILLED.value)
    invoice_id: Mapped[UUID | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def cadence_enum(self) -> Cadence | None:
        return Cadence.parse(self.cadence) if self.cadence else None

    @property
    def bills_automatically(self) -> bool:
        return self.auto_bill is None or bool(self.auto_bill)

    def __repr__(self) -> str:
        return f"<Work {self.title} ({self.cadence or 'one-time'})>"


class WorkTaskConfig(TrackedBase):
    """Per-work override of a service task template.  None means inherit."""

    __tablename__ = "work_task_configs"

    __table_args__ = (
        UniqueConstraint("work_id", "template_id", name="uq_work_task_config"),
    )

    work_id: Mapped[UUID] = mapped_column(ForeignKey("works.id"), nullable=False)
    template_id: Mapped[UUID] = mapped_column(
        ForeignKey("service_task_templates.id"), nullable=False
    )
    cadence: Mapped[str | None] = mapped_column(String(20), nullable=True)
    offset_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    offset_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    offset_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    exact_due_date: Mapped[date | None] = mapped_column(nullable=True)
    anchor_day: Mapped[str | None] = mapped_column(String(20), nullable=True)
    anchor_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    due_date_overrides: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool | None] = mapped_column(Boolean, nullable=True)


class WorkDocument(TrackedBase):
    """A document the client must supply; copied into every period."""

    __tablename__ = "work_documents"

    work_id: Mapped[UUID] = mapped_column(ForeignKey("works.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_required: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)


class WorkTask(TrackedBase):
    """A task of a one-time work."""

    __tablename__ = "work_tasks"

    __table_args__ = (
        UniqueConstraint("work_id", "template_id", name="uq_work_tasks_template"),
        Index("idx_work_tasks_work_status", "work_id", "status"),
    )

    work_id: Mapped[UUID] = mapped_column(ForeignKey("works.id"), nullable=False)
    template_id: Mapped[UUID] = mapped_column(
        ForeignKey("service_task_templates.id"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[date | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=TaskStatus.PENDING.value)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
