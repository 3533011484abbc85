"""
Pipeline package.

Components:
- orchestrator: Task state machine (source -> script -> narration -> assembly)
- progress_manager: Stage bands and remaining-time estimates
- service_adapter: Retry and fallback over external service candidates

The orchestrator depends on most services, which in turn use the
adapter, so it is imported from its module rather than re-exported here:

    from castforge.services.pipeline.orchestrator import PipelineOrchestrator
"""

from .progress_manager import ProgressManager
from .service_adapter import Candidate, ExternalServiceAdapter, FailureKind, classify_failure

__all__ = [
    "Candidate",
    "ExternalServiceAdapter",
    "FailureKind",
    "ProgressManager",
    "classify_failure",
]
