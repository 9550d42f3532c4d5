"""Deployer capability contract implemented by every service type."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

from handel.domain.models.contexts import (
    BindContext,
    ConsumeEventsContext,
    DeployContext,
    PreDeployContext,
    ProduceEventsContext,
    ServiceContext,
)


class ServiceDeployer(ABC):
    """Lifecycle operations for one service type.

    Every operation must be implemented. Operations that make no sense for
    a type raise :class:`NotSupportedError` instead of being left out.
    ``pre_deploy``, ``bind`` and ``deploy`` must be idempotent so a whole
    run can be repeated safely.
    """

    #: Output types this service hands to services that depend on it.
    produced_deploy_output_types: ClassVar[tuple[str, ...]] = ()
    #: Output types this service accepts from its dependencies.
    consumed_deploy_output_types: ClassVar[tuple[str, ...]] = ()
    #: Service types allowed to consume events produced by this service.
    produced_events_supported_services: ClassVar[tuple[str, ...]] = ()

    @abstractmethod
    def check(self, service_context: ServiceContext) -> list[str]:
        """Validate the service parameters. Must not have side effects."""

    @abstractmethod
    async def pre_deploy(self, service_context: ServiceContext) -> PreDeployContext:
        """Create resources other services bind to (e.g. security groups)."""

    @abstractmethod
    async def bind(
        self,
        service_context: ServiceContext,
        dependency_pre_deploy_contexts: dict[str, PreDeployContext],
    ) -> BindContext:
        """Establish permissions between the service and its dependencies."""

    @abstractmethod
    async def deploy(
        self,
        service_context: ServiceContext,
        pre_deploy_context: PreDeployContext,
        dependency_deploy_contexts: dict[str, DeployContext],
    ) -> DeployContext:
        """Create the service, or reconcile it when it already exists."""

    @abstractmethod
    async def consume_events(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        producer_service_context: ServiceContext,
        producer_deploy_context: DeployContext,
    ) -> ConsumeEventsContext:
        """Wire an inbound event source into the service."""

    @abstractmethod
    async def produce_events(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        consumer_service_context: ServiceContext,
        consumer_deploy_context: DeployContext,
    ) -> ProduceEventsContext:
        """Wire an outbound event sink onto the service."""

    # ------------------------------------------------------------------
    # Services deployed outside of the current run
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_pre_deploy_context_for_external_ref(
        self, service_context: ServiceContext
    ) -> PreDeployContext:
        """Pre-deploy output of an externally deployed service."""

    @abstractmethod
    async def get_bind_context_for_external_ref(
        self,
        service_context: ServiceContext,
        dependency_pre_deploy_contexts: dict[str, PreDeployContext],
    ) -> BindContext:
        """Bind output of an externally deployed service."""

    @abstractmethod
    async def get_deploy_context_for_external_ref(
        self, service_context: ServiceContext
    ) -> DeployContext:
        """Look up a service deployed outside of the current run."""

    @abstractmethod
    async def get_consume_events_context_for_external_ref(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        producer_service_context: ServiceContext,
        producer_deploy_context: DeployContext,
    ) -> ConsumeEventsContext:
        """Wire an event source into an externally deployed consumer."""


class NotSupportedError(Exception):
    """Raised when a deployer is asked for an operation its type cannot perform."""


class ProvisioningError(Exception):
    """Raised when provisioning a service against the control plane fails."""


class ExternalReferenceError(Exception):
    """Raised when an externally referenced service has not been deployed."""
