"""ORM models of the practice kernel.  Importing this package registers every table."""

from practice_kernel.models.catalog import (
    Customer,
    CustomerServicePrice,
    Service,
    ServiceTaskTemplate,
    TenantSettings,
)
from practice_kernel.models.invoice import Invoice, InvoiceLine
from practice_kernel.models.ledger import LedgerTransaction, Voucher, VoucherEntry
from practice_kernel.models.period import (
    DismissedPeriodTask,
    PeriodDocument,
    PeriodTask,
    WorkPeriod,
    window_of,
)
from practice_kernel.models.pipeline_failure import PipelineFailure
from practice_kernel.models.work import (
    WORK_ACTIVE,
    WORK_COMPLETED,
    Work,
    WorkDocument,
    WorkTask,
    WorkTaskConfig,
)

__all__ = [
    "Customer",
    "CustomerServicePrice",
    "DismissedPeriodTask",
    "Invoice",
    "InvoiceLine",
    "LedgerTransaction",
    "PeriodDocument",
    "PeriodTask",
    "PipelineFailure",
    "Service",
    "ServiceTaskTemplate",
    "TenantSettings",
    "Voucher",
    "VoucherEntry",
    "WORK_ACTIVE",
    "WORK_COMPLETED",
    "Work",
    "WorkDocument",
    "WorkPeriod",
    "WorkTask",
    "WorkTaskConfig",
    "window_of",
]
