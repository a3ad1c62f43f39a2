"""Services for the practice kernel (write side)."""

from practice_kernel.services.base import SYSTEM_ACTOR_ID, BaseService
from practice_kernel.services.completion_tracker import CompletionResult, CompletionTracker
from practice_kernel.services.event_bus import DomainEventBus, PublishResult
from practice_kernel.services.failure_recorder import FailureRecorder
from practice_kernel.services.invoice_generator import InvoiceGenerator
from practice_kernel.services.ledger_poster import LedgerPoster, PostingResult
from practice_kernel.services.period_generator import GenerationResult, PeriodGenerator
from practice_kernel.services.work_service import WorkService

__all__ = [
    "BaseService",
    "CompletionResult",
    "CompletionTracker",
    "DomainEventBus",
    "FailureRecorder",
    "GenerationResult",
    "InvoiceGenerator",
    "LedgerPoster",
    "PeriodGenerator",
    "PostingResult",
    "PublishResult",
    "SYSTEM_ACTOR_ID",
    "WorkService",
]
