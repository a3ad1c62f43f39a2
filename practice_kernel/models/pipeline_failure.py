"""
Module: practice_kernel.models.pipeline_failure
Responsibility: ORM persistence for failures of asynchronous pipeline
    stages (period generation, invoice generation, ledger posting).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

A stage that fails must not undo the user action that triggered it, so
the failure is written here instead of being raised.  Repeated failures of
the same stage for the same entity and cause bump ``occurrence_count`` on
one row (uq_pipeline_failures_key) rather than adding rows.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from practice_kernel.db.base import Base
from practice_kernel.domain.types import (
    FailureStatus,
    FailureType,
    PipelineFailureRecord,
    PipelineStage,
)


class PipelineFailure(Base):
    __tablename__ = "pipeline_failures"

    __table_args__ = (
        UniqueConstraint(
            "stage", "entity_type", "entity_id", "error_code",
            name="uq_pipeline_failures_key",
        ),
        Index("idx_pipeline_failures_status", "status", "stage"),
    )

    stage: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    failure_type: Mapped[str] = mapped_column(String(20), nullable=False)
    error_code: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    detail: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=FailureStatus.OPEN.value)
    occurrence_count: Mapped[int] = mapped_column(Integer, default=1)
    first_seen_at: Mapped[datetime] = mapped_column(nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> PipelineFailureRecord:
        return PipelineFailureRecord(
            failure_id=self.id,
            stage=PipelineStage(self.stage),
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            failure_type=FailureType(self.failure_type),
            error_code=self.error_code,
            message=self.message,
            status=FailureStatus(self.status),
            occurrence_count=self.occurrence_count,
            last_seen_at=self.last_seen_at,
            detail=self.detail,
        )

    def __repr__(self) -> str:
        return (
            f"<PipelineFailure {self.stage} {self.entity_type}:{self.entity_id} "
            f"{self.error_code} x{self.occurrence_count}>"
        )
