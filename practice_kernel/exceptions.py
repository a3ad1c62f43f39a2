"""
Typed exception hierarchy for the practice kernel.

Every error carries a machine-readable ``code`` class attribute and stores
its context as attributes, so callers catch by type and read structured
data instead of parsing messages.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PracticeKernelError (base)
    |
    +-- ConfigurationError          soft failure, user must fix configuration
    |   +-- MissingPriceError
    |   +-- UnmappedIncomeAccountError
    |   +-- UnmappedLedgerAccountError
    |   +-- MissingReceiptAccountError
    |
    +-- ReferentialError            an id that should exist does not
    |   +-- WorkNotFoundError
    |   +-- PeriodNotFoundError
    |   +-- TaskNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- ServiceNotFoundError
    |   +-- CustomerNotFoundError
    |   +-- DocumentNotFoundError
    |
    +-- ScheduleError
    |   +-- RecurrenceLockedError
    |   +-- InvalidScheduleError
    |
    +-- PostingError
    |   +-- UnbalancedPostingError
    |
    +-- StatusError
        +-- InvalidStatusError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Configuration   | MISSING_PRICE               | No override, negotiated or default price
                | UNMAPPED_INCOME_ACCOUNT     | Neither service nor tenant income account
                | UNMAPPED_LEDGER_ACCOUNT     | Invoice lacks income or receivable account
                | MISSING_RECEIPT_ACCOUNT     | Tenant has no cash/bank account for receipts
----------------|-----------------------------|-----------------------------------------
Referential     | WORK_NOT_FOUND              | Work id does not exist
                | PERIOD_NOT_FOUND            | Period id does not exist
                | TASK_NOT_FOUND              | Task id does not exist
                | INVOICE_NOT_FOUND           | Invoice id does not exist
                | SERVICE_NOT_FOUND           | Service id does not exist
                | CUSTOMER_NOT_FOUND          | Customer id does not exist
                | DOCUMENT_NOT_FOUND          | Period document id does not exist
----------------|-----------------------------|-----------------------------------------
Schedule        | RECURRENCE_LOCKED           | Cadence change after periods exist
                | INVALID_SCHEDULE            | Bad cadence, month or weekday value
----------------|-----------------------------|-----------------------------------------
Posting         | UNBALANCED_POSTING          | Debits != credits for one business event
----------------|-----------------------------|-----------------------------------------
Status          | INVALID_STATUS              | Unknown task or invoice status

===============================================================================
"""

from typing import Any


class PracticeKernelError(Exception):
    """
    Base exception for all practice kernel errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "PRACTICE_KERNEL_ERROR"


# Configuration errors


class ConfigurationError(PracticeKernelError):
    """Base exception for remediable configuration gaps."""

    code: str = "CONFIGURATION_ERROR"


class MissingPriceError(ConfigurationError):
    """No billable price could be resolved for a work or period."""

    code: str = "MISSING_PRICE"

    def __init__(self, work_id: Any, service_id: Any, period_id: Any = None):
        self.work_id = str(work_id)
        self.service_id = str(service_id)
        self.period_id = str(period_id) if period_id is not None else None
        super().__init__(
            f"No positive price resolved for work {work_id} (service {service_id})"
        )


class UnmappedIncomeAccountError(ConfigurationError):
    """Neither the service nor the tenant maps an income account."""

    code: str = "UNMAPPED_INCOME_ACCOUNT"

    def __init__(self, service_id: Any, tenant_id: Any):
        self.service_id = str(service_id)
        self.tenant_id = str(tenant_id)
        super().__init__(
            f"No income account mapped for service {service_id} "
            f"or tenant {tenant_id}"
        )


class UnmappedLedgerAccountError(ConfigurationError):
    """An invoice cannot post because an account mapping is missing."""

    code: str = "UNMAPPED_LEDGER_ACCOUNT"

    def __init__(self, invoice_id: Any, missing: str):
        self.invoice_id = str(invoice_id)
        self.missing = missing
        super().__init__(f"Invoice {invoice_id} has no {missing} account")


class MissingReceiptAccountError(ConfigurationError):
    """Tenant has no cash or bank account to receive payments into."""

    code: str = "MISSING_RECEIPT_ACCOUNT"

    def __init__(self, tenant_id: Any, receipt_type: str):
        self.tenant_id = str(tenant_id)
        self.receipt_type = receipt_type
        super().__init__(
            f"Tenant {tenant_id} has no {receipt_type} account for receipts"
        )


# Referential errors


class ReferentialError(PracticeKernelError):
    """Base exception for missing referenced entities."""

    code: str = "REFERENTIAL_ERROR"
    entity: str = "entity"

    def __init__(self, entity_id: Any):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity.capitalize()} not found: {entity_id}")


class WorkNotFoundError(ReferentialError):
    code: str = "WORK_NOT_FOUND"
    entity = "work"


class PeriodNotFoundError(ReferentialError):
    code: str = "PERIOD_NOT_FOUND"
    entity = "period"


class TaskNotFoundError(ReferentialError):
    code: str = "TASK_NOT_FOUND"
    entity = "task"


class InvoiceNotFoundError(ReferentialError):
    code: str = "INVOICE_NOT_FOUND"
    entity = "invoice"


class ServiceNotFoundError(ReferentialError):
    code: str = "SERVICE_NOT_FOUND"
    entity = "service"


class CustomerNotFoundError(ReferentialError):
    code: str = "CUSTOMER_NOT_FOUND"
    entity = "customer"


class DocumentNotFoundError(ReferentialError):
    code: str = "DOCUMENT_NOT_FOUND"
    entity = "document"


# Schedule errors


class ScheduleError(PracticeKernelError):
    """Base exception for recurrence schedule errors."""

    code: str = "SCHEDULE_ERROR"


class RecurrenceLockedError(ScheduleError):
    """
    Schedule fields cannot change once periods exist.

    Use WorkService.regenerate_periods to apply the change explicitly.
    """

    code: str = "RECURRENCE_LOCKED"

    def __init__(self, work_id: Any, fields: list[str], period_count: int):
        self.work_id = str(work_id)
        self.fields = fields
        self.period_count = period_count
        super().__init__(
            f"Work {work_id} already has {period_count} period(s); "
            f"cannot change {', '.join(fields)} without regenerating periods"
        )


class InvalidScheduleError(ScheduleError):
    """A schedule value is out of range or unknown."""

    code: str = "INVALID_SCHEDULE"

    def __init__(self, field: str, value: Any, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field}={value!r}: {reason}")


# Posting errors


class PostingError(PracticeKernelError):
    """Base exception for ledger posting errors."""

    code: str = "POSTING_ERROR"


class UnbalancedPostingError(PostingError):
    """Debits and credits of one business event do not agree."""

    code: str = "UNBALANCED_POSTING"

    def __init__(self, invoice_id: Any, debits: str, credits: str):
        self.invoice_id = str(invoice_id)
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"Unbalanced posting for invoice {invoice_id}: "
            f"debits={debits}, credits={credits}"
        )


# Status errors


class StatusError(PracticeKernelError):
    """Base exception for status errors."""

    code: str = "STATUS_ERROR"


class InvalidStatusError(StatusError):
    """Requested status is not a member of the status enum."""

    code: str = "INVALID_STATUS"

    def __init__(self, entity: str, status: Any):
        self.entity = entity
        self.status = str(status)
        super().__init__(f"Invalid {entity} status: {status}")
