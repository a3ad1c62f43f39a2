"""
FailureRecorder -- persisted, queryable record of pipeline stage failures.

Responsibility:
    Turns an exception raised by a pipeline stage (period generation,
    invoice generation, ledger posting) into a PipelineFailure row keyed
    by (stage, entity type, entity id, error code), and resolves those
    rows once the stage later succeeds for the same entity.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by DomainEventBus after it has rolled back the failing
    subscriber's savepoint.

Invariants enforced:
    - One row per failure key.  A repeat bumps ``occurrence_count`` and
      ``last_seen_at`` and reopens a resolved row.
    - Classification is by exception type: ConfigurationError ->
      configuration, ReferentialError -> referential, anything else ->
      system.

Failure modes:
    - IntegrityError on a concurrent first insert of the same key is
      absorbed by a savepoint and turned into an update.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from practice_kernel.domain.clock import Clock
from practice_kernel.domain.types import (
    FailureStatus,
    FailureType,
    PipelineFailureRecord,
    PipelineStage,
)
from practice_kernel.exceptions import ConfigurationError, ReferentialError
from practice_kernel.logging_config import get_logger
from practice_kernel.models.pipeline_failure import PipelineFailure

logger = get_logger("services.failure_recorder")


def classify_failure(exc: BaseException) -> FailureType:
    if isinstance(exc, ConfigurationError):
        return FailureType.CONFIGURATION
    if isinstance(exc, ReferentialError):
        return FailureType.REFERENTIAL
    return FailureType.SYSTEM


def failure_code(exc: BaseException) -> str:
    """The kernel error code, or the exception class name for foreign errors."""
    return getattr(exc, "code", None) or type(exc).__name__


def _failure_detail(exc: BaseException) -> dict[str, Any]:
    detail = {"exception_type": type(exc).__name__}
    for key, value in vars(exc).items():
        if key.startswith("_"):
            continue
        detail[key] = value if isinstance(value, (str, int, float, bool)) or value is None else str(value)
    return detail


class FailureRecorder:
    """
    Records and resolves pipeline failures.

    Contract:
        ``record`` and ``resolve`` flush but never commit.  The caller's
        transaction (the one that carried the triggering mutation) makes
        them durable.
    """

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    def record(
        self,
        stage: PipelineStage,
        entity_type: str,
        entity_id: UUID,
        exc: BaseException,
    ) -> PipelineFailureRecord:
        """
        Upsert the failure row for ``exc``.

        Returns:
            Snapshot of the row after the upsert.
        """
        stage = PipelineStage(stage)
        code = failure_code(exc)
        now = self._clock.now()

        row = self._find(stage, entity_type, entity_id, code)
        if row is None:
            savepoint = self._session.begin_nested()
            try:
                row = PipelineFailure(
                    stage=stage.value,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    failure_type=classify_failure(exc).value,
                    error_code=code,
                    message=str(exc),
                    detail=_failure_detail(exc),
                    status=FailureStatus.OPEN.value,
                    occurrence_count=1,
                    first_seen_at=now,
                    last_seen_at=now,
                )
                self._session.add(row)
                self._session.flush()
                savepoint.commit()
                logger.info(
                    "pipeline_failure_recorded",
                    extra={
                        "stage": stage.value,
                        "entity_type": entity_type,
                        "entity_id": entity_id,
                        "error_code": code,
                        "failure_type": row.failure_type,
                    },
                )
                return row.to_dto()
            except IntegrityError:
                logger.debug(
                    "pipeline_failure_race_retry",
                    extra={"stage": stage.value, "entity_id": entity_id, "error_code": code},
                )
                savepoint.rollback()
                row = self._find(stage, entity_type, entity_id, code)
                if row is None:
                    raise

        row.occurrence_count += 1
        row.last_seen_at = now
        row.message = str(exc)
        row.detail = _failure_detail(exc)
        row.status = FailureStatus.OPEN.value
        row.resolved_at = None
        self._session.flush()
        logger.info(
            "pipeline_failure_repeated",
            extra={
                "stage": stage.value,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "error_code": code,
                "occurrence_count": row.occurrence_count,
            },
        )
        return row.to_dto()

    def resolve(
        self,
        stage: PipelineStage,
        entity_type: str,
        entity_id: UUID,
    ) -> int:
        """Mark every open failure of ``stage`` for the entity resolved."""
        stage = PipelineStage(stage)
        rows = self._session.execute(
            select(PipelineFailure).where(
                PipelineFailure.stage == stage.value,
                PipelineFailure.entity_type == entity_type,
                PipelineFailure.entity_id == entity_id,
                PipelineFailure.status == FailureStatus.OPEN.value,
            )
        ).scalars().all()
        if not rows:
            return 0

        now = self._clock.now()
        for row in rows:
            row.status = FailureStatus.RESOLVED.value
            row.resolved_at = now
        self._session.flush()
        logger.info(
            "pipeline_failures_resolved",
            extra={
                "stage": stage.value,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "count": len(rows),
            },
        )
        return len(rows)

    def list_open(
        self,
        stage: PipelineStage | None = None,
        entity_id: UUID | None = None,
    ) -> list[PipelineFailureRecord]:
        query = select(PipelineFailure).where(
            PipelineFailure.status == FailureStatus.OPEN.value
        )
        if stage is not None:
            query = query.where(PipelineFailure.stage == PipelineStage(stage).value)
        if entity_id is not None:
            query = query.where(PipelineFailure.entity_id == entity_id)
        query = query.order_by(PipelineFailure.last_seen_at.desc())
        return [row.to_dto() for row in self._session.execute(query).scalars()]

    def _find(
        self,
        stage: PipelineStage,
        entity_type: str,
        entity_id: UUID,
        code: str,
    ) -> PipelineFailure | None:
        return self._session.execute(
            select(PipelineFailure).where(
                PipelineFailure.stage == stage.value,
                PipelineFailure.entity_type == entity_type,
                PipelineFailure.entity_id == entity_id,
                PipelineFailure.error_code == code,
            )
        ).scalar_one_or_none()
