"""
practice_kernel.domain.types -- enums and frozen value objects.  ZERO I/O.

Shared by the pure engines (``practice_engines``), the ORM models and the
services.  All DTOs are frozen dataclasses; collections are tuples or
read-only mappings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

from practice_kernel.exceptions import InvalidScheduleError, InvalidStatusError


# =============================================================================
# Recurrence enums
# =============================================================================


class Cadence(str, Enum):
    """Recurrence cadence of a work or a task template."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"
    YEARLY = "yearly"

    @property
    def rank(self) -> int:
        """Ordering from finest (daily) to coarsest (yearly)."""
        return _CADENCE_RANK[self]

    @property
    def months(self) -> int:
        """Length in months for month-based cadences, 0 otherwise."""
        return _CADENCE_MONTHS[self]

    @classmethod
    def parse(cls, value: Cadence | str) -> Cadence:
        """Accept enum members and loose spellings such as ``Half-Yearly``."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidScheduleError("cadence", value, "unknown cadence") from None


_CADENCE_RANK = {
    Cadence.DAILY: 0,
    Cadence.WEEKLY: 1,
    Cadence.MONTHLY: 2,
    Cadence.QUARTERLY: 3,
    Cadence.HALF_YEARLY: 4,
    Cadence.YEARLY: 5,
}

_CADENCE_MONTHS = {
    Cadence.DAILY: 0,
    Cadence.WEEKLY: 0,
    Cadence.MONTHLY: 1,
    Cadence.QUARTERLY: 3,
    Cadence.HALF_YEARLY: 6,
    Cadence.YEARLY: 12,
}


class PeriodCalculationType(str, Enum):
    """Which period relative to the work's start date is generated first."""

    PREVIOUS_PERIOD = "previous_period"
    CURRENT_PERIOD = "current_period"
    NEXT_PERIOD = "next_period"


class OffsetType(str, Enum):
    """Due-date offset measured from the period end."""

    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"
    DAY_OF_MONTH = "day_of_month"


WEEKDAYS: tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def weekday_index(name: str) -> int:
    """Map a weekday name to ``date.weekday()`` numbering (monday == 0)."""
    key = str(name).strip().lower()
    for idx, day in enumerate(WEEKDAYS):
        if key == day or (len(key) >= 3 and day.startswith(key)):
            return idx
    raise InvalidScheduleError("weekday", name, "unknown weekday")


def validate_month(field_name: str, month: int) -> int:
    if not 1 <= int(month) <= 12:
        raise InvalidScheduleError(field_name, month, "must be between 1 and 12")
    return int(month)


# =============================================================================
# Status enums
# =============================================================================


class _ParseableStatus(str, Enum):

    @classmethod
    def parse(cls, value: Any):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidStatusError(cls._entity_name(), value) from None

    @classmethod
    def _entity_name(cls) -> str:
        return cls.__name__.replace("Status", "").lower()


class PeriodStatus(_ParseableStatus):
    """
    Lifecycle of a materialized period.

    PENDING -> ACTIVE -> COMPLETED, and COMPLETED -> ACTIVE when a task is
    reopened.
    """

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class TaskStatus(_ParseableStatus):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class InvoiceStatus(_ParseableStatus):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    CANCELLED = "cancelled"

    @property
    def posts_to_ledger(self) -> bool:
        return self not in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED)


class BillingStatus(str, Enum):
    UNBILLED = "unbilled"
    BILLED = "billed"


class ReceiptType(str, Enum):
    CASH = "cash"
    BANK = "bank"


class VoucherType(str, Enum):
    RECEIPT = "receipt"


class PipelineStage(str, Enum):
    """Pipeline stage that a persisted failure belongs to."""

    PERIOD_GENERATION = "period_generation"
    INVOICE_GENERATION = "invoice_generation"
    LEDGER_POSTING = "ledger_posting"


class FailureType(str, Enum):
    CONFIGURATION = "configuration"  # user must fix settings
    REFERENTIAL = "referential"      # referenced row missing
    SYSTEM = "system"                # unexpected error


class FailureStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


# =============================================================================
# Period and task value objects
# =============================================================================


@dataclass(frozen=True)
class PeriodWindow:
    """Inclusive [start, end] window of one cadence occurrence."""

    start: date
    end: date
    name: str
    cadence: Cadence

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Period end {self.end} precedes start {self.start}")

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


@dataclass(frozen=True)
class TaskRule:
    """
    Effective due-date rule of one task template for one work.

    Built from a ServiceTaskTemplate with any WorkTaskConfig overrides
    applied.  ``cadence`` None means "same as the work".
    """

    template_id: UUID
    title: str
    cadence: Cadence | None = None
    offset_type: OffsetType | None = None
    offset_value: int | None = None
    offset_months: int = 1
    exact_due_date: date | None = None
    anchor_day: str | None = None
    anchor_month: int | None = None
    due_date_overrides: Mapping[date, date] = field(
        default_factory=lambda: MappingProxyType({})
    )
    start_date: date | None = None
    is_active: bool = True
    sort_order: int = 0
    description: str | None = None
    priority: str | None = None
    estimated_hours: Decimal | None = None

    def __post_init__(self) -> None:
        if self.anchor_month is not None:
            validate_month("anchor_month", self.anchor_month)
        if not isinstance(self.due_date_overrides, MappingProxyType):
            object.__setattr__(
                self,
                "due_date_overrides",
                MappingProxyType(dict(self.due_date_overrides)),
            )

    def effective_cadence(self, work_cadence: Cadence) -> Cadence:
        return self.cadence or work_cadence


@dataclass(frozen=True)
class TaskCandidate:
    """A task instance the generator may materialize inside a period."""

    template_id: UUID
    title: str
    due_date: date
    window: PeriodWindow
    sort_order: int = 0
    description: str | None = None
    priority: str | None = None
    estimated_hours: Decimal | None = None


@dataclass(frozen=True)
class PeriodPlan:
    """An eligible period together with its currently eligible tasks."""

    window: PeriodWindow
    tasks: tuple[TaskCandidate, ...]


# =============================================================================
# Billing value objects
# =============================================================================


@dataclass(frozen=True)
class NumberingScheme:
    """Invoice numbering: ``{prefix}-{number}[-{suffix}]``."""

    prefix: str = "INV"
    suffix: str = ""
    width: int = 4
    zero_pad: bool = True
    starting_number: int = 1

    def __post_init__(self) -> None:
        if self.width < 1:
            raise ValueError("width must be at least 1")
        if self.starting_number < 0:
            raise ValueError("starting_number must be non-negative")


@dataclass(frozen=True)
class PriceResolution:
    """Resolved price and the rung of the priority chain it came from."""

    amount: Decimal
    source: str  # "period_override", "work_override", "customer_price", "service_default"


@dataclass(frozen=True)
class InvoiceAmounts:
    subtotal: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total: Decimal


# =============================================================================
# Failure DTO
# =============================================================================


@dataclass(frozen=True)
class PipelineFailureRecord:
    """Immutable snapshot of a persisted pipeline failure."""

    failure_id: UUID
    stage: PipelineStage
    entity_type: str
    entity_id: UUID
    failure_type: FailureType
    error_code: str
    message: str
    status: FailureStatus
    occurrence_count: int
    last_seen_at: datetime | None = None
    detail: Mapping[str, Any] | None = None
