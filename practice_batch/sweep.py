"""
PeriodSweepScheduler -- periodic sweep over active recurring works.

Contract:
    ``tick()`` runs one sweep in its own session and commits it:

    1. ongoing period generation for every active recurring work;
    2. re-publishes PeriodCompleted for completed, auto-billed periods
       and WorkCompleted for completed, auto-billed one-time works that
       still have no invoice, so billing is retried once the
       configuration that blocked it has been fixed.

    ``start()`` / ``stop()`` run ticks on a background thread.

Architecture: practice_batch.  Depends on practice_kernel services;
    nothing in practice_kernel or practice_engines imports from here.

Invariants enforced:
    - Each work is generated inside its own savepoint; one failing work
      is recorded as a PipelineFailure and does not stop the sweep.
    - "Today" comes from the injected Clock.
    - Stop signal is honoured between works.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from practice_config import PracticeSettings, get_active_settings
from practice_kernel.domain.clock import Clock, SystemClock
from practice_kernel.domain.events import PeriodCompleted, WorkCompleted
from practice_kernel.domain.types import PeriodStatus, PipelineStage
from practice_kernel.logging_config import LogContext, get_logger
from practice_kernel.models.period import WorkPeriod
from practice_kernel.models.work import WORK_ACTIVE, WORK_COMPLETED, Work
from practice_kernel.services.work_service import WorkService

logger = get_logger("batch.sweep")


@dataclass
class SweepResult:
    works_scanned: int = 0
    periods_created: int = 0
    tasks_created: int = 0
    billing_retried: int = 0
    failed_work_ids: list[UUID] = field(default_factory=list)


class PeriodSweepScheduler:
    """In-process periodic sweep.

    Non-goals:
        - NOT a general job scheduler; it runs exactly this sweep.
        - NOT distributed; run one instance per database.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        actor_id: UUID | None = None,
        settings: PracticeSettings | None = None,
        tick_interval_seconds: int | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._actor_id = actor_id
        self._settings = settings or get_active_settings()
        self._tick_interval = tick_interval_seconds or self._settings.sweep_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> SweepResult:
        """Run one sweep and commit it (public for testing)."""
        session = self._session_factory()
        try:
            result = self._sweep(session)
            session.commit()
            return result
        except Exception:
            session.rollback()
            logger.exception("sweep_tick_failed")
            return SweepResult()
        finally:
            session.close()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="period-sweep",
            daemon=True,
        )
        self._thread.start()
        logger.info("sweep_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("sweep_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("sweep_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _sweep(self, session: Session) -> SweepResult:
        service = WorkService(session, self._clock, self._actor_id, self._settings)
        result = SweepResult()

        work_ids = session.execute(
            select(Work.id).where(
                Work.is_recurring.is_(True),
                Work.status == WORK_ACTIVE,
            ).order_by(Work.created_at, Work.id)
        ).scalars().all()

        for work_id in work_ids:
            if self._stop_event.is_set():
                break
            result.works_scanned += 1
            with LogContext.bind(work_id=work_id, stage=PipelineStage.PERIOD_GENERATION.value):
                savepoint = session.begin_nested()
                try:
                    generated = service.generator.generate_next_period(work_id)
                    savepoint.commit()
                except Exception as exc:
                    savepoint.rollback()
                    logger.warning("sweep_work_failed", extra={"work_id": work_id}, exc_info=True)
                    service.failures.record(PipelineStage.PERIOD_GENERATION, "work", work_id, exc)
                    result.failed_work_ids.append(work_id)
                    continue
                service.failures.resolve(PipelineStage.PERIOD_GENERATION, "work", work_id)
                result.periods_created += generated.periods_created
                result.tasks_created += generated.tasks_created

        result.billing_retried = self._retry_billing(session, service)
        logger.info(
            "sweep_completed",
            extra={
                "works_scanned": result.works_scanned,
                "periods_created": result.periods_created,
                "tasks_created": result.tasks_created,
                "billing_retried": result.billing_retried,
                "failed_works": len(result.failed_work_ids),
            },
        )
        return result

    def _retry_billing(self, session: Session, service: WorkService) -> int:
        pending = session.execute(
            select(WorkPeriod.id, WorkPeriod.work_id)
            .join(Work, Work.id == WorkPeriod.work_id)
            .where(
                WorkPeriod.status == PeriodStatus.COMPLETED.value,
                WorkPeriod.invoice_id.is_(None),
                or_(Work.auto_bill.is_(None), Work.auto_bill.is_(True)),
            )
            .order_by(WorkPeriod.period_start_date)
        ).all()

        one_time = session.execute(
            select(Work.id)
            .where(
                Work.is_recurring.is_(False),
                Work.status == WORK_COMPLETED,
                Work.invoice_id.is_(None),
                or_(Work.auto_bill.is_(None), Work.auto_bill.is_(True)),
            )
            .order_by(Work.created_at, Work.id)
        ).scalars().all()

        events = [
            PeriodCompleted(period_id=period_id, work_id=work_id) for period_id, work_id in pending
        ]
        events.extend(WorkCompleted(work_id=work_id) for work_id in one_time)

        retried = 0
        for event in events:
            if self._stop_event.is_set():
                break
            service.bus.publish(event)
            retried += 1
        return retried
