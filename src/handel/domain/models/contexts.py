"""Service graph: per-service nodes, their phase outputs and state machine."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import Field

from handel.domain.models.account import AccountConfig
from handel.domain.models.base import ValueObject
from handel.domain.models.handelfile import ServiceType


if TYPE_CHECKING:
    from handel.domain.ports.deployer import ServiceDeployer


class DeployOutputType(str, Enum):
    """Output types produced and consumed by the built-in deployers."""

    ENVIRONMENT_VARIABLES = "environmentVariables"
    POLICIES = "policies"
    SECURITY_GROUPS = "securityGroups"


class LifecyclePhase(str, Enum):
    """Phases of one orchestration run."""

    VALIDATION = "validation"
    CHECK = "check"
    PRE_DEPLOY = "pre_deploy"
    BIND = "bind"
    DEPLOY = "deploy"
    EVENTS = "events"


class ServiceState(str, Enum):
    """Lifecycle states of a service node."""

    NOT_STARTED = "not_started"
    CHECKED = "checked"
    PRE_DEPLOYED = "pre_deployed"
    BOUND = "bound"
    DEPLOYED = "deployed"
    EVENTS_WIRED = "events_wired"
    FAILED = "failed"


SERVICE_VALID_TRANSITIONS: dict[ServiceState, set[ServiceState]] = {
    ServiceState.NOT_STARTED: {ServiceState.CHECKED, ServiceState.FAILED},
    ServiceState.CHECKED: {ServiceState.PRE_DEPLOYED, ServiceState.FAILED},
    ServiceState.PRE_DEPLOYED: {ServiceState.BOUND, ServiceState.FAILED},
    ServiceState.BOUND: {ServiceState.DEPLOYED, ServiceState.FAILED},
    ServiceState.DEPLOYED: {ServiceState.EVENTS_WIRED, ServiceState.FAILED},
    ServiceState.EVENTS_WIRED: set(),
    ServiceState.FAILED: set(),
}

# External references are resolved instead of provisioned and are never checked.
EXTERNAL_VALID_TRANSITIONS: dict[ServiceState, set[ServiceState]] = {
    ServiceState.NOT_STARTED: {ServiceState.PRE_DEPLOYED, ServiceState.FAILED},
    ServiceState.PRE_DEPLOYED: {ServiceState.BOUND, ServiceState.FAILED},
    ServiceState.BOUND: {ServiceState.DEPLOYED, ServiceState.FAILED},
    ServiceState.DEPLOYED: {ServiceState.EVENTS_WIRED, ServiceState.FAILED},
    ServiceState.EVENTS_WIRED: set(),
    ServiceState.FAILED: set(),
}

_ENV_VAR_INVALID_CHARS = re.compile(r"[^A-Z0-9_]")


# ----------------------------------------------------------------------
# Phase outputs
# ----------------------------------------------------------------------


class PhaseOutput(ValueObject):
    """Common identity carried by every phase output."""

    app_name: str
    environment_name: str
    service_name: str
    service_type: str
    outputs: dict[str, Any] = Field(default_factory=dict)


class PreDeployContext(PhaseOutput):
    """Resources that must exist before anything binds to the service."""

    security_groups: list[str] = Field(default_factory=list)


class BindContext(PhaseOutput):
    """Wiring established between a service and its dependencies."""

    bound_dependencies: list[str] = Field(default_factory=list)


class DeployContext(PhaseOutput):
    """Result of provisioning a service, exposed to its dependents."""

    environment_variables: dict[str, str] = Field(default_factory=dict)
    policies: list[dict[str, Any]] = Field(default_factory=list)
    output_types: list[str] = Field(default_factory=list)
    event_outputs: dict[str, str] = Field(default_factory=dict)


class ConsumeEventsContext(PhaseOutput):
    """Inbound event source wired into a consumer."""

    producer_name: str


class ProduceEventsContext(PhaseOutput):
    """Outbound event sink wired onto a producer."""

    consumer_name: str


# ----------------------------------------------------------------------
# Graph nodes
# ----------------------------------------------------------------------


@dataclass(eq=False)
class ServiceContext:
    """A single deployable service resolved to its deployer.

    Identity and wiring are fixed once the environment is built; only the
    phase output slots are written afterwards, each exactly once.
    """

    app_name: str
    environment_name: str
    service_name: str
    service_type: ServiceType
    params: dict[str, Any]
    account_config: AccountConfig
    deployer: ServiceDeployer
    tags: dict[str, str] = field(default_factory=dict)
    external: bool = False
    dependencies: list[ServiceContext] = field(default_factory=list)
    event_consumers: list[ServiceContext] = field(default_factory=list)

    state: ServiceState = ServiceState.NOT_STARTED
    failure_reason: str = ""
    pre_deploy_context: PreDeployContext | None = None
    bind_context: BindContext | None = None
    deploy_context: DeployContext | None = None
    consume_events_contexts: dict[str, ConsumeEventsContext] = field(default_factory=dict)
    produce_events_contexts: dict[str, ProduceEventsContext] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"ServiceContext({self.app_name}/{self.environment_name}/"
            f"{self.service_name}, type={self.service_type}, state={self.state.value})"
        )

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.app_name, self.environment_name, self.service_name)

    @property
    def dependency_names(self) -> list[str]:
        return [dep.service_name for dep in self.dependencies]

    @property
    def resource_name(self) -> str:
        """Name used for the service's provisioned stack."""
        return f"{self.app_name}-{self.environment_name}-{self.service_name}-{self.service_type.name}"

    @property
    def is_failed(self) -> bool:
        return self.state == ServiceState.FAILED

    def env_var_name(self, attribute: str) -> str:
        """Environment variable key namespaced by type/app/environment/service."""
        raw = "_".join([
            self.service_type.name,
            self.app_name,
            self.environment_name,
            self.service_name,
            attribute,
        ])
        return _ENV_VAR_INVALID_CHARS.sub("_", raw.upper())

    def output_identity(self) -> dict[str, str]:
        """Identity fields shared by every phase output of this service."""
        return {
            "app_name": self.app_name,
            "environment_name": self.environment_name,
            "service_name": self.service_name,
            "service_type": str(self.service_type),
        }

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def transition_to(self, new_state: ServiceState) -> None:
        table = EXTERNAL_VALID_TRANSITIONS if self.external else SERVICE_VALID_TRANSITIONS
        valid = table.get(self.state, set())
        if new_state not in valid:
            raise InvalidStateTransitionError(
                f"Service '{self.service_name}' cannot transition from "
                f"{self.state.value} to {new_state.value}"
            )
        self.state = new_state

    def fail(self, reason: str) -> None:
        """Mark the service failed; a second failure keeps the first reason."""
        if self.state == ServiceState.FAILED:
            return
        self.failure_reason = reason
        self.transition_to(ServiceState.FAILED)

    # ------------------------------------------------------------------
    # Output slots
    # ------------------------------------------------------------------

    def record_pre_deploy(self, context: PreDeployContext) -> None:
        self._ensure_empty("pre_deploy", self.pre_deploy_context)
        self.pre_deploy_context = context
        self.transition_to(ServiceState.PRE_DEPLOYED)

    def record_bind(self, context: BindContext) -> None:
        self._ensure_empty("bind", self.bind_context)
        self.bind_context = context
        self.transition_to(ServiceState.BOUND)

    def record_deploy(self, context: DeployContext) -> None:
        self._ensure_empty("deploy", self.deploy_context)
        self.deploy_context = context
        self.transition_to(ServiceState.DEPLOYED)

    def record_consume_events(self, producer_name: str, context: ConsumeEventsContext) -> None:
        self._ensure_empty(
            f"consume_events:{producer_name}", self.consume_events_contexts.get(producer_name)
        )
        self.consume_events_contexts[producer_name] = context

    def record_produce_events(self, consumer_name: str, context: ProduceEventsContext) -> None:
        self._ensure_empty(
            f"produce_events:{consumer_name}", self.produce_events_contexts.get(consumer_name)
        )
        self.produce_events_contexts[consumer_name] = context

    def _ensure_empty(self, slot: str, current: Any) -> None:
        if current is not None:
            raise OutputAlreadyRecordedError(
                f"Output slot '{slot}' of service '{self.service_name}' is already written"
            )


@dataclass(eq=False)
class EnvironmentContext:
    """All service nodes of one environment, owned by a single run."""

    app_name: str
    environment_name: str
    account_config: AccountConfig
    tags: dict[str, str] = field(default_factory=dict)
    service_contexts: dict[str, ServiceContext] = field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"EnvironmentContext({self.app_name}/{self.environment_name}, "
            f"services={sorted(self.service_contexts)})"
        )

    def get(self, service_name: str) -> ServiceContext:
        return self.service_contexts[service_name]

    @property
    def services(self) -> list[ServiceContext]:
        return list(self.service_contexts.values())

    def dependents_of(self, service_name: str) -> list[ServiceContext]:
        return [
            ctx for ctx in self.service_contexts.values()
            if service_name in ctx.dependency_names
        ]

    def event_edges(self) -> list[tuple[ServiceContext, ServiceContext]]:
        """All (producer, consumer) pairs declared in the environment."""
        return [
            (producer, consumer)
            for producer in self.service_contexts.values()
            for consumer in producer.event_consumers
        ]


class InvalidStateTransitionError(Exception):
    """Raised when a service node is moved along an invalid transition."""


class OutputAlreadyRecordedError(Exception):
    """Raised when a phase output slot is written twice."""
