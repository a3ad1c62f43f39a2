"""
Domain events exchanged between pipeline stages.

Published on ``practice_kernel.services.event_bus.DomainEventBus`` and
consumed synchronously within the publishing transaction.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from uuid import UUID

from practice_kernel.domain.types import InvoiceStatus


@dataclass(frozen=True)
class DomainEvent(ABC):
    """Base for all domain events; names the entity a failure is recorded against."""

    @property
    @abstractmethod
    def entity_type(self) -> str:
        ...

    @property
    @abstractmethod
    def entity_id(self) -> UUID:
        ...


@dataclass(frozen=True)
class WorkCreated(DomainEvent):
    work_id: UUID

    @property
    def entity_type(self) -> str:
        return "work"

    @property
    def entity_id(self) -> UUID:
        return self.work_id


@dataclass(frozen=True)
class PeriodCompleted(DomainEvent):
    """Every task of a recurring period reports completed."""

    period_id: UUID
    work_id: UUID

    @property
    def entity_type(self) -> str:
        return "period"

    @property
    def entity_id(self) -> UUID:
        return self.period_id


@dataclass(frozen=True)
class WorkCompleted(DomainEvent):
    """Every task of a one-time work reports completed."""

    work_id: UUID

    @property
    def entity_type(self) -> str:
        return "work"

    @property
    def entity_id(self) -> UUID:
        return self.work_id


@dataclass(frozen=True)
class InvoiceStatusChanged(DomainEvent):
    invoice_id: UUID
    old_status: InvoiceStatus
    new_status: InvoiceStatus

    @property
    def entity_type(self) -> str:
        return "invoice"

    @property
    def entity_id(self) -> UUID:
        return self.invoice_id
