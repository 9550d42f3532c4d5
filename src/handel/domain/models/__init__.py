"""Domain models package."""

from handel.domain.models.account import AccountConfig
from handel.domain.models.base import DomainEvent, generate_id, utc_now, ValueObject
from handel.domain.models.contexts import (
    BindContext,
    ConsumeEventsContext,
    DeployContext,
    DeployOutputType,
    EnvironmentContext,
    EXTERNAL_VALID_TRANSITIONS,
    InvalidStateTransitionError,
    LifecyclePhase,
    OutputAlreadyRecordedError,
    PhaseOutput,
    PreDeployContext,
    ProduceEventsContext,
    SERVICE_VALID_TRANSITIONS,
    ServiceContext,
    ServiceState,
)
from handel.domain.models.handelfile import (
    DEFAULT_EXTENSION_PREFIX,
    EventConsumerDefinition,
    HandelFile,
    ServiceDefinition,
    ServiceType,
)
from handel.domain.models.results import (
    DeploySummary,
    OrchestrationResult,
    OrchestrationStatus,
)


__all__ = [
    "AccountConfig",
    "BindContext",
    "ConsumeEventsContext",
    "DEFAULT_EXTENSION_PREFIX",
    "DeployContext",
    "DeployOutputType",
    "DeploySummary",
    "DomainEvent",
    "EXTERNAL_VALID_TRANSITIONS",
    "EnvironmentContext",
    "EventConsumerDefinition",
    "HandelFile",
    "InvalidStateTransitionError",
    "LifecyclePhase",
    "OrchestrationResult",
    "OrchestrationStatus",
    "OutputAlreadyRecordedError",
    "PhaseOutput",
    "PreDeployContext",
    "ProduceEventsContext",
    "SERVICE_VALID_TRANSITIONS",
    "ServiceContext",
    "ServiceDefinition",
    "ServiceState",
    "ServiceType",
    "ValueObject",
    "generate_id",
    "utc_now",
]
