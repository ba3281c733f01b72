"""Weighted multi-criteria assessment of crew registrations."""

from assessment.pipeline import AssessmentOutcome, AssessmentPipeline, OutcomeStatus
from assessment.notifier import Notifier, RecordingNotifier
from assessment.store import AssessmentStore, InMemoryAssessmentStore

__all__ = [
    "AssessmentOutcome",
    "AssessmentPipeline",
    "OutcomeStatus",
    "Notifier",
    "RecordingNotifier",
    "AssessmentStore",
    "InMemoryAssessmentStore",
]
