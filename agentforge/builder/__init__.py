"""Build pipeline: phases, progress tracking, resume handling and the service facade."""

from .events import CollectingSink, HttpRelaySink, ProgressEmitter, ProgressEvent
from .orchestrator import BuildOutcome, BuildRun, Orchestrator
from .phases import PHASE_IDS, PHASES
from .progress import StepProgress
from .resume import Deadline, ResumeGuard, ResumePlan
from .service import BuildRequest, BuildResult, BuildService

__all__ = [
    "BuildOutcome",
    "BuildRequest",
    "BuildResult",
    "BuildRun",
    "BuildService",
    "CollectingSink",
    "Deadline",
    "HttpRelaySink",
    "Orchestrator",
    "PHASES",
    "PHASE_IDS",
    "ProgressEmitter",
    "ProgressEvent",
    "ResumeGuard",
    "ResumePlan",
    "StepProgress",
]
