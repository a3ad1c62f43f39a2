"""
DomainEventBus -- synchronous, fail-open dispatch of domain events to the
next pipeline stage.

Responsibility:
    Replaces implicit trigger fan-out with an explicit, ordered list of
    subscribers per event type.  Each subscriber runs inside its own
    database savepoint so a failing stage is rolled back on its own while
    the mutation that published the event still commits.

Architecture position:
    Kernel > Services -- imperative shell.
    Wired by WorkService; published to by WorkService, CompletionTracker
    callers and PeriodSweepScheduler.

Invariants enforced:
    - Subscribers run in subscription order, in the publisher's
      transaction.
    - A subscriber exception never propagates to the publisher.  It is
      persisted through FailureRecorder and logged as
      ``pipeline_stage_failed``.
    - A subscriber that succeeds resolves the open failures of its stage
      for the event's entity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session

from practice_kernel.domain.events import DomainEvent
from practice_kernel.domain.types import PipelineFailureRecord, PipelineStage
from practice_kernel.logging_config import LogContext, get_logger
from practice_kernel.services.failure_recorder import FailureRecorder

logger = get_logger("services.event_bus")

EventHandler = Callable[[DomainEvent], object]


@dataclass(frozen=True)
class Subscription:
    event_type: type[DomainEvent]
    handler: EventHandler
    stage: PipelineStage


@dataclass(frozen=True)
class PublishResult:
    """Outcome of one ``publish`` call."""

    event: DomainEvent
    delivered: int
    failures: tuple[PipelineFailureRecord, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failures


class DomainEventBus:
    """
    In-process event bus bound to one session.

    Usage:
        bus = DomainEventBus(session, failure_recorder)
        bus.subscribe(PeriodCompleted, invoices.on_period_completed,
                      PipelineStage.INVOICE_GENERATION)
        bus.publish(PeriodCompleted(period_id=p.id, work_id=w.id))
    """

    def __init__(self, session: Session, failure_recorder: FailureRecorder):
        self._session = session
        self._failures = failure_recorder
        self._subscriptions: list[Subscription] = []

    def subscribe(
        self,
        event_type: type[DomainEvent],
        handler: EventHandler,
        stage: PipelineStage,
    ) -> None:
        self._subscriptions.append(
            Subscription(event_type=event_type, handler=handler, stage=PipelineStage(stage))
        )
        logger.debug(
            "event_handler_subscribed",
            extra={
                "event_type": event_type.__name__,
                "handler": getattr(handler, "__qualname__", repr(handler)),
                "stage": PipelineStage(stage).value,
            },
        )

    def subscriptions_for(self, event: DomainEvent) -> list[Subscription]:
        return [s for s in self._subscriptions if isinstance(event, s.event_type)]

    def publish(self, event: DomainEvent) -> PublishResult:
        """Deliver ``event`` to every matching subscriber."""
        failures: list[PipelineFailureRecord] = []
        delivered = 0
        for subscription in self.subscriptions_for(event):
            failure = self._deliver(subscription, event)
            if failure is None:
                delivered += 1
            else:
                failures.append(failure)
        return PublishResult(event=event, delivered=delivered, failures=tuple(failures))

    def _deliver(
        self,
        subscription: Subscription,
        event: DomainEvent,
    ) -> PipelineFailureRecord | None:
        entity_type = event.entity_type
        entity_id: UUID = event.entity_id
        stage = subscription.stage

        with LogContext.bind(stage=stage.value):
            savepoint = self._session.begin_nested()
            try:
                subscription.handler(event)
                savepoint.commit()
            except Exception as exc:
                # Fail-open: the publisher's mutation commits; the failure is persisted.
                savepoint.rollback()
                logger.warning(
                    "pipeline_stage_failed",
                    extra={
                        "event_type": type(event).__name__,
                        "entity_type": entity_type,
                        "entity_id": entity_id,
                        "error_code": getattr(exc, "code", type(exc).__name__),
                    },
                    exc_info=True,
                )
                return self._failures.record(stage, entity_type, entity_id, exc)

            self._failures.resolve(stage, entity_type, entity_id)
            return None
