"""
ledger_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes kernel services and selectors
    into multi-step, all-or-nothing operations.  Currently the year-end
    close.

Architecture position:
    Services -- orchestration over the kernel.

    Dependency direction (enforced by tests/architecture/test_kernel_boundary.py):
        ledger_services/ -> ledger_kernel/   (allowed)
        ledger_kernel/   -> ledger_services/ (FORBIDDEN)
"""

from ledger_services._close_types import (
    CLOSE_STEPS,
    ChangeSet,
    ClosePreview,
    CloseStep,
    YearEndCloseResult,
)
from ledger_services.year_end_close_orchestrator import YearEndCloseOrchestrator

__all__ = [
    "CLOSE_STEPS",
    "ChangeSet",
    "ClosePreview",
    "CloseStep",
    "YearEndCloseOrchestrator",
    "YearEndCloseResult",
]
