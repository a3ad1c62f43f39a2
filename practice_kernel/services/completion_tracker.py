"""
CompletionTracker -- per-period and per-work completion aggregates.

Responsibility:
    Recounts the tasks of a period (or of a one-time work) from scratch
    and derives ``total_tasks``, ``completed_tasks``,
    ``all_tasks_completed`` and the period status.  Reports whether the
    recount moved the owner into the completed state so the caller can
    publish the completion event exactly on that edge.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by PeriodGenerator after inserting tasks and by WorkService
    after every task status change or deletion.

Invariants enforced:
    - Recount is total, never incremental.
    - all_tasks_completed == (total > 0 and total == completed).
    - Period status: completed when all tasks are completed; active when
      any task has started or when a completed period is reopened;
      pending otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from practice_kernel.domain.clock import Clock
from practice_kernel.domain.types import PeriodStatus, TaskStatus
from practice_kernel.exceptions import PeriodNotFoundError, WorkNotFoundError
from practice_kernel.logging_config import get_logger
from practice_kernel.models.period import PeriodTask, WorkPeriod
from practice_kernel.models.work import WORK_ACTIVE, WORK_COMPLETED, Work, WorkTask

logger = get_logger("services.completion_tracker")


@dataclass(frozen=True)
class CompletionResult:
    """Aggregates after one recount."""

    owner_id: UUID
    total_tasks: int
    completed_tasks: int
    all_tasks_completed: bool
    became_complete: bool
    reopened: bool


def _status_counts(session: Session, column, owner_id: UUID, status_column) -> dict[str, int]:
    rows = session.execute(
        select(status_column, func.count()).where(column == owner_id).group_by(status_column)
    ).all()
    return {status: count for status, count in rows}


class CompletionTracker:

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    def recompute_period(self, period_id: UUID) -> CompletionResult:
        """
        Recount one period's tasks and update its aggregates and status.

        Raises:
            PeriodNotFoundError: No such period.
        """
        period = self._session.get(WorkPeriod, period_id)
        if period is None:
            raise PeriodNotFoundError(period_id)

        self._session.flush()
        counts = _status_counts(self._session, PeriodTask.period_id, period_id, PeriodTask.status)
        total = sum(counts.values())
        completed = counts.get(TaskStatus.COMPLETED.value, 0)
        started = completed + counts.get(TaskStatus.IN_PROGRESS.value, 0)
        all_done = total > 0 and total == completed

        was_complete = period.status == PeriodStatus.COMPLETED.value
        if all_done:
            status = PeriodStatus.COMPLETED
        elif started or was_complete:
            status = PeriodStatus.ACTIVE
        else:
            status = PeriodStatus.PENDING

        period.total_tasks = total
        period.completed_tasks = completed
        period.all_tasks_completed = all_done
        period.status = status.value
        if all_done and not was_complete:
            period.completed_at = self._clock.now()
        elif not all_done:
            period.completed_at = None
        self._session.flush()

        result = CompletionResult(
            owner_id=period_id,
            total_tasks=total,
            completed_tasks=completed,
            all_tasks_completed=all_done,
            became_complete=all_done and not was_complete,
            reopened=was_complete and not all_done,
        )
        logger.debug(
            "period_completion_recomputed",
            extra={
                "period_id": period_id,
                "total_tasks": total,
                "completed_tasks": completed,
                "status": status.value,
            },
        )
        if result.became_complete:
            logger.info("period_completed", extra={"period_id": period_id, "work_id": period.work_id})
        elif result.reopened:
            logger.info("period_reopened", extra={"period_id": period_id, "work_id": period.work_id})
        return result

    def recompute_work(self, work_id: UUID) -> CompletionResult:
        """Recount the tasks of a one-time work and update its status."""
        work = self._session.get(Work, work_id)
        if work is None:
            raise WorkNotFoundError(work_id)

        self._session.flush()
        counts = _status_counts(self._session, WorkTask.work_id, work_id, WorkTask.status)
        total = sum(counts.values())
        completed = counts.get(TaskStatus.COMPLETED.value, 0)
        all_done = total > 0 and total == completed

        was_complete = work.status == WORK_COMPLETED
        if all_done and not was_complete:
            work.status = WORK_COMPLETED
            work.completed_at = self._clock.now()
        elif not all_done and was_complete:
            work.status = WORK_ACTIVE
            work.completed_at = None
        self._session.flush()

        result = CompletionResult(
            owner_id=work_id,
            total_tasks=total,
            completed_tasks=completed,
            all_tasks_completed=all_done,
            became_complete=all_done and not was_complete,
            reopened=was_complete and not all_done,
        )
        if result.became_complete:
            logger.info("work_completed", extra={"work_id": work_id, "total_tasks": total})
        return result
