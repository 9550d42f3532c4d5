"""Domain events package."""

from handel.domain.events.lifecycle_events import (
    OrchestrationCompleted,
    OrchestrationFailed,
    OrchestrationStarted,
    ServicePhaseCompleted,
    ServicePhaseFailed,
)


__all__ = [
    "OrchestrationCompleted",
    "OrchestrationFailed",
    "OrchestrationStarted",
    "ServicePhaseCompleted",
    "ServicePhaseFailed",
]
