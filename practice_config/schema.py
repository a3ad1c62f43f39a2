"""
Settings schema (``practice_config.schema``).

Frozen dataclasses describing the installation-wide defaults.  Per-tenant
rows (``TenantSettings``) override the numbering and ledger parts at
runtime; these values apply when a tenant has no row.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from practice_kernel.domain.types import NumberingScheme, validate_month, weekday_index
from practice_engines.billing import PAYMENT_TERMS_DAYS


@dataclass(frozen=True)
class ReceiptNumbering:
    prefix: str = "RV-"
    width: int = 5

    def __post_init__(self) -> None:
        if self.width < 1:
            raise ValueError("receipt width must be at least 1")


@dataclass(frozen=True)
class PracticeSettings:
    """
    Installation-wide defaults.

    Example YAML::

        fiscal_year_start_month: 4
        week_start_day: monday
        fallback_due_offset_days: 10
        invoice_numbering:
          prefix: INV
          width: 4
        sweep_interval_seconds: 3600
    """

    fiscal_year_start_month: int = 4
    week_start_day: str = "monday"
    fallback_due_offset_days: int = 10
    invoice_numbering: NumberingScheme = field(default_factory=NumberingScheme)
    receipt_numbering: ReceiptNumbering = field(default_factory=ReceiptNumbering)
    default_payment_terms: str = "net_30"
    sweep_interval_seconds: int = 3600

    def __post_init__(self) -> None:
        validate_month("fiscal_year_start_month", self.fiscal_year_start_month)
        weekday_index(self.week_start_day)
        if self.fallback_due_offset_days < 0:
            raise ValueError("fallback_due_offset_days must be non-negative")
        if self.default_payment_terms not in PAYMENT_TERMS_DAYS:
            raise ValueError(
                f"default_payment_terms must be one of {sorted(PAYMENT_TERMS_DAYS)}, "
                f"got '{self.default_payment_terms}'"
            )
        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive")
