"""
BaseService -- common constructor and the "insert or get existing"
primitive shared by the writing services.

Responsibility:
    Holds the caller's session, the injected clock and the acting user.
    Provides ``_insert_or_get``, the atomic replacement for
    "SELECT EXISTS ... then INSERT": look up by natural key, otherwise
    insert inside a savepoint and, on a uniqueness conflict, roll back
    only the savepoint and return the row the concurrent writer created.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Services flush but never commit or roll back the outer transaction.
    - A duplicate-key conflict on a natural key is a no-op success.
"""

from __future__ import annotations

from abc import ABC
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from practice_kernel.db.base import Base
from practice_kernel.domain.clock import Clock, SystemClock
from practice_kernel.logging_config import get_logger

ModelType = TypeVar("ModelType", bound=Base)

logger = get_logger("services.base")

SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000000")


class BaseService(ABC):
    """
    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and persists with
        ``session.flush()`` inside the caller's transaction.

    Non-goals:
        - Does NOT commit.  The caller (WorkService's caller, the sweep's
          session_scope, or a test) owns the boundary.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        actor_id: UUID | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.actor_id = actor_id or SYSTEM_ACTOR_ID

    def _insert_or_get(
        self,
        model: type[ModelType],
        key: dict[str, Any],
        values: dict[str, Any] | None = None,
    ) -> tuple[ModelType, bool]:
        """
        Return the row matching ``key``, inserting it when absent.

        Returns:
            (row, created) -- created is False when the row already
            existed or a concurrent writer inserted it first.
        """
        existing = self._find_by_key(model, key)
        if existing is not None:
            return existing, False

        savepoint = self.session.begin_nested()
        try:
            row = model(**key, **(values or {}), created_by_id=self.actor_id)
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
            return row, True
        except IntegrityError:
            savepoint.rollback()
            logger.debug(
                "insert_conflict_absorbed",
                extra={"table": model.__tablename__},
            )
            existing = self._find_by_key(model, key)
            if existing is None:
                raise
            return existing, False

    def _find_by_key(self, model: type[ModelType], key: dict[str, Any]) -> ModelType | None:
        return self.session.execute(
            select(model).filter_by(**key)
        ).scalar_one_or_none()
