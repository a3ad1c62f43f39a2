"""
Module: practice_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines used by
    the kernel services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  May only import
    practice_kernel.domain and practice_kernel.logging_config.

Invariants enforced:
    - Purity: engines never read the clock; "today" is always a parameter.
    - Decimal-only arithmetic for money.
    - Determinism: identical inputs always produce identical outputs.
"""

from practice_engines.billing import (
    compute_invoice_amounts,
    format_invoice_number,
    format_receipt_number,
    next_invoice_sequence,
    payment_due_date,
    resolve_income_account,
    resolve_price,
)
from practice_engines.due_dates import resolve_due_date
from practice_engines.eligibility import is_task_eligible, plan_period, plan_periods
from practice_engines.periods import (
    add_months,
    first_window,
    iter_windows,
    next_window,
    period_bounds,
    previous_window,
    sub_windows,
)

__all__ = [
    "add_months",
    "compute_invoice_amounts",
    "first_window",
    "format_invoice_number",
    "format_receipt_number",
    "is_task_eligible",
    "iter_windows",
    "next_invoice_sequence",
    "next_window",
    "payment_due_date",
    "period_bounds",
    "plan_period",
    "plan_periods",
    "previous_window",
    "resolve_due_date",
    "resolve_income_account",
    "resolve_price",
    "sub_windows",
]
