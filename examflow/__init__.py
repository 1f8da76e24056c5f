"""examflow: timed multi-phase exam session orchestrator."""
from examflow.config import Settings
from examflow.dedup import RequestDeduplicator, default_deduplicator
from examflow.engine import SessionListener, SessionOrchestrator
from examflow.errors import (
    ExamNotFoundError,
    ExamServiceError,
    MalformedResponseError,
    ServiceUnavailableError,
    SessionExpiredError,
    UnresolvedOptionError,
)
from examflow.models import ExamSession, LifecycleState, PhaseDescriptor, Question
from examflow.phases import InternalPhase, map_server_phase, next_phase

__all__ = [
    "Settings",
    "RequestDeduplicator",
    "default_deduplicator",
    "SessionListener",
    "SessionOrchestrator",
    "ExamNotFoundError",
    "ExamServiceError",
    "MalformedResponseError",
    "ServiceUnavailableError",
    "SessionExpiredError",
    "UnresolvedOptionError",
    "ExamSession",
    "LifecycleState",
    "PhaseDescriptor",
    "Question",
    "InternalPhase",
    "map_server_phase",
    "next_phase",
]
