# Order composition domain module
from genorder.domain.composition.models import (
    CompositionResult,
    CompositionRun,
    CompositionState,
    CompositionStep,
    StepOutcome,
    StepPolicy,
    StepStatus,
)
from genorder.domain.composition.service import CompositionOrchestrator

__all__ = [
    "CompositionResult",
    "CompositionRun",
    "CompositionState",
    "CompositionStep",
    "StepOutcome",
    "StepPolicy",
    "StepStatus",
    "CompositionOrchestrator",
]
