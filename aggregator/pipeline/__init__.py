from .stats import Trigger, SourceStatus, SourceStats, RunStats, CleanupStats
from .retention import RetentionPolicy, run_cleanup
from .reclassify import ReclassifyFilter, BatchReclassifyResult, batch_reclassify
from .coordinator import RunCoordinator, RunAccepted, AlreadyRunning
from .scheduler import Scheduler

__all__ = [
    "Trigger",
    "SourceStatus",
    "SourceStats",
    "RunStats",
    "CleanupStats",
    "RetentionPolicy",
    "run_cleanup",
    "ReclassifyFilter",
    "BatchReclassifyResult",
    "batch_reclassify",
    "RunCoordinator",
    "RunAccepted",
    "AlreadyRunning",
    "Scheduler",
]
