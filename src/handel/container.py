"""Composition root wiring settings, observability and the deploy service."""

from __future__ import annotations

from collections.abc import Mapping

import structlog

from handel.config import get_settings, Settings
from handel.domain.ports.deployer import ServiceDeployer
from handel.domain.ports.services import EventPublisher, StackClient
from handel.domain.services.deploy_service import DeployService
from handel.domain.services.lifecycle import LifecycleOrchestrator
from handel.domain.services.registry import ServiceRegistry
from handel.infrastructure.cloud.stack_client import InMemoryStackClient
from handel.infrastructure.deployers import create_default_registry
from handel.infrastructure.messaging.event_publisher import InMemoryEventPublisher
from handel.infrastructure.observability.logging import setup_logging
from handel.infrastructure.observability.tracing import setup_tracing


logger = structlog.get_logger(__name__)


class ServiceContainer:
    """Simple dependency injection container.

    Implements the Composition Root pattern: logging and tracing are
    configured once, then the registry, orchestrator and deploy service
    are assembled around a single stack client and event publisher.
    """

    _instance: ServiceContainer | None = None

    def __init__(
        self,
        settings: Settings | None = None,
        stack_client: StackClient | None = None,
        extensions: Mapping[str, Mapping[str, ServiceDeployer]] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        observability = self._settings.observability
        setup_logging(observability.log_level, observability.log_format)
        self._tracer_provider = setup_tracing(observability)

        self._event_publisher = InMemoryEventPublisher()
        self._stack_client = stack_client or InMemoryStackClient()
        self._registry = create_default_registry(self._stack_client, extensions)
        self._orchestrator = LifecycleOrchestrator(
            settings=self._settings.orchestrator,
            event_publisher=self._event_publisher,
            metrics_enabled=observability.metrics_enabled,
        )
        self._deploy_service = DeployService(
            self._registry,
            self._orchestrator,
            metrics_enabled=observability.metrics_enabled,
        )
        logger.info(
            "service_container_ready",
            service_types=len(self._registry),
            max_concurrency=self._settings.orchestrator.max_concurrency,
        )

    @classmethod
    def get_instance(cls) -> ServiceContainer:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def event_publisher(self) -> EventPublisher:
        return self._event_publisher

    @property
    def stack_client(self) -> StackClient:
        return self._stack_client

    @property
    def registry(self) -> ServiceRegistry:
        return self._registry

    @property
    def orchestrator(self) -> LifecycleOrchestrator:
        return self._orchestrator

    @property
    def deploy_service(self) -> DeployService:
        return self._deploy_service
