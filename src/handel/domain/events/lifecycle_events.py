"""Orchestration lifecycle domain events."""

from __future__ import annotations

from handel.domain.models.base import DomainEvent


class OrchestrationStarted(DomainEvent):
    """Emitted when an environment's orchestration run begins."""

    app_name: str
    environment_name: str
    service_count: int
    event_type: str = "orchestration.started"


class ServicePhaseCompleted(DomainEvent):
    """Emitted when a service finishes one lifecycle phase."""

    environment_name: str
    service_name: str
    phase: str
    event_type: str = "service.phase_completed"


class ServicePhaseFailed(DomainEvent):
    """Emitted when a deployer operation fails for a service."""

    environment_name: str
    service_name: str
    phase: str
    error_message: str
    event_type: str = "service.phase_failed"


class OrchestrationCompleted(DomainEvent):
    """Emitted when every service of an environment is deployed and wired."""

    app_name: str
    environment_name: str
    event_type: str = "orchestration.completed"


class OrchestrationFailed(DomainEvent):
    """Emitted when an environment's run ends with errors."""

    app_name: str
    environment_name: str
    phase: str
    error_count: int
    event_type: str = "orchestration.failed"
