from shadowlm.batch.models import (
    BatchJob,
    BatchOutcome,
    BatchProgress,
    Conversation,
    JobState,
    RetryPolicy,
    UnitResult,
    WorkItem,
)
from shadowlm.batch.progress import ProgressReporter

__all__ = [
    "BatchJob",
    "BatchOutcome",
    "BatchProgress",
    "Conversation",
    "JobState",
    "RetryPolicy",
    "UnitResult",
    "WorkItem",
    "ProgressReporter",
]
