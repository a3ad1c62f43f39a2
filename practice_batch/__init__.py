"""
practice_batch -- the periodic sweep that keeps recurring works growing
new periods and retries billing of completed periods.

Architecture:
    practice_batch/ is a top-level package.  Nothing in practice_kernel
    or practice_engines imports from it.
"""

from practice_batch.sweep import PeriodSweepScheduler, SweepResult

__all__ = ["PeriodSweepScheduler", "SweepResult"]
