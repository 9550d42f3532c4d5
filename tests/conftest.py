"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from typing import Any

import pytest

from handel.config import OrchestratorSettings
from handel.domain.models.account import AccountConfig
from handel.domain.models.contexts import (
    BindContext,
    ConsumeEventsContext,
    DeployContext,
    PreDeployContext,
    ProduceEventsContext,
    ServiceContext,
)
from handel.domain.ports.deployer import (
    ExternalReferenceError,
    NotSupportedError,
    ProvisioningError,
    ServiceDeployer,
)
from handel.domain.services.lifecycle import LifecycleOrchestrator
from handel.domain.services.registry import ServiceRegistry
from handel.infrastructure.cloud.stack_client import InMemoryStackClient
from handel.infrastructure.deployers import create_default_registry
from handel.infrastructure.messaging.event_publisher import InMemoryEventPublisher


class CallLog:
    """Shared record of deployer calls with start/end timestamps."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    def record(self, phase: str, service: str, started: float, finished: float, **extra: Any) -> None:
        self.calls.append({
            "phase": phase, "service": service,
            "started": started, "finished": finished, **extra,
        })

    def for_phase(self, phase: str) -> dict[str, dict[str, Any]]:
        return {c["service"]: c for c in self.calls if c["phase"] == phase}

    def services(self, phase: str) -> set[str]:
        return {c["service"] for c in self.calls if c["phase"] == phase}


class RecordingDeployer(ServiceDeployer):
    """Configurable fake deployer that records every call it receives."""

    def __init__(
        self,
        log: CallLog,
        produced: Iterable[str] = (),
        consumed: Iterable[str] = (),
        event_consumers: Iterable[str] = (),
        check_errors: Iterable[str] = (),
        fail_phases: Iterable[str] = (),
        delay: float = 0.0,
        consumes_events: bool = False,
        produces_events: bool = False,
        external_deployed: bool = True,
        environment_variables: dict[str, str] | None = None,
    ) -> None:
        self.produced_deploy_output_types = tuple(produced)
        self.consumed_deploy_output_types = tuple(consumed)
        self.produced_events_supported_services = tuple(event_consumers)
        self._log = log
        self._check_errors = list(check_errors)
        self._fail_phases = set(fail_phases)
        self._delay = delay
        self._consumes_events = consumes_events
        self._produces_events = produces_events
        self._external_deployed = external_deployed
        self._environment_variables = environment_variables

    async def _step(self, phase: str, ctx: ServiceContext, **extra: Any) -> None:
        started = time.monotonic()
        await asyncio.sleep(self._delay)
        finished = time.monotonic()
        self._log.record(phase, ctx.service_name, started, finished, **extra)
        if phase in self._fail_phases:
            raise ProvisioningError(f"{phase} failed for {ctx.service_name}")

    def check(self, service_context: ServiceContext) -> list[str]:
        now = time.monotonic()
        self._log.record("check", service_context.service_name, now, now)
        return list(self._check_errors)

    async def pre_deploy(self, service_context: ServiceContext) -> PreDeployContext:
        await self._step("pre_deploy", service_context)
        return PreDeployContext(
            **service_context.output_identity(),
            security_groups=[f"sg-{service_context.service_name}"],
        )

    async def bind(
        self,
        service_context: ServiceContext,
        dependency_pre_deploy_contexts: dict[str, PreDeployContext],
    ) -> BindContext:
        await self._step("bind", service_context, dependencies=sorted(dependency_pre_deploy_contexts))
        return BindContext(
            **service_context.output_identity(),
            bound_dependencies=sorted(dependency_pre_deploy_contexts),
        )

    async def deploy(
        self,
        service_context: ServiceContext,
        pre_deploy_context: PreDeployContext,
        dependency_deploy_contexts: dict[str, DeployContext],
    ) -> DeployContext:
        await self._step(
            "deploy", service_context,
            dependencies=sorted(dependency_deploy_contexts),
            received=dict(dependency_deploy_contexts),
        )
        return self._deploy_context(service_context)

    def _deploy_context(self, service_context: ServiceContext) -> DeployContext:
        return DeployContext(
            **service_context.output_identity(),
            output_types=list(self.produced_deploy_output_types),
            environment_variables=self._environment_variables or {
                service_context.env_var_name("URL"): f"{service_context.service_name}.example.com",
            },
            policies=[{"Effect": "Allow", "Resource": service_context.service_name}],
            event_outputs={"resource_arn": f"arn:{service_context.service_name}"},
        )

    async def consume_events(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        producer_service_context: ServiceContext,
        producer_deploy_context: DeployContext,
    ) -> ConsumeEventsContext:
        if not self._consumes_events:
            raise NotSupportedError(f"{service_context.service_type} doesn't consume events")
        await self._step("consume_events", service_context, producer=producer_service_context.service_name)
        return ConsumeEventsContext(
            **service_context.output_identity(),
            producer_name=producer_service_context.service_name,
        )

    async def produce_events(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        consumer_service_context: ServiceContext,
        consumer_deploy_context: DeployContext,
    ) -> ProduceEventsContext:
        if not self._produces_events:
            raise NotSupportedError(f"{service_context.service_type} doesn't produce events")
        await self._step("produce_events", service_context, consumer=consumer_service_context.service_name)
        return ProduceEventsContext(
            **service_context.output_identity(),
            consumer_name=consumer_service_context.service_name,
        )

    async def get_pre_deploy_context_for_external_ref(
        self, service_context: ServiceContext
    ) -> PreDeployContext:
        await self._step("external_pre_deploy", service_context)
        return PreDeployContext(**service_context.output_identity())

    async def get_bind_context_for_external_ref(
        self,
        service_context: ServiceContext,
        dependency_pre_deploy_contexts: dict[str, PreDeployContext],
    ) -> BindContext:
        await self._step(
            "external_bind", service_context, dependencies=sorted(dependency_pre_deploy_contexts),
        )
        return BindContext(
            **service_context.output_identity(),
            bound_dependencies=sorted(dependency_pre_deploy_contexts),
        )

    async def get_deploy_context_for_external_ref(
        self, service_context: ServiceContext
    ) -> DeployContext:
        await self._step("external_ref", service_context)
        if not self._external_deployed:
            raise ExternalReferenceError(
                f"Service '{service_context.service_name}' has not been deployed. "
                f"You must deploy it independently first"
            )
        return self._deploy_context(service_context)

    async def get_consume_events_context_for_external_ref(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        producer_service_context: ServiceContext,
        producer_deploy_context: DeployContext,
    ) -> ConsumeEventsContext:
        if not self._consumes_events:
            raise NotSupportedError(f"{service_context.service_type} doesn't consume events")
        await self._step(
            "external_consume_events", service_context,
            producer=producer_service_context.service_name,
        )
        return ConsumeEventsContext(
            **service_context.output_identity(),
            producer_name=producer_service_context.service_name,
        )


@pytest.fixture
def call_log() -> CallLog:
    return CallLog()


@pytest.fixture
def make_deployer(call_log: CallLog) -> Callable[..., RecordingDeployer]:
    def factory(**kwargs: Any) -> RecordingDeployer:
        return RecordingDeployer(call_log, **kwargs)
    return factory


@pytest.fixture
def fake_registry(make_deployer: Callable[..., RecordingDeployer]) -> ServiceRegistry:
    """Registry of fake types covering output and event compatibility."""
    registry = ServiceRegistry()
    registry.register_builtin("database", make_deployer(produced=["database-ref"]))
    registry.register_builtin("web", make_deployer(
        produced=["web-ref"], consumed=["database-ref", "queue-ref"], consumes_events=True,
    ))
    registry.register_builtin("queue", make_deployer(
        produced=["queue-ref"], event_consumers=["web"], produces_events=True,
    ))
    registry.register_builtin("static", make_deployer())
    return registry


@pytest.fixture
def account_config() -> AccountConfig:
    return AccountConfig(account_id="123456789012", region="us-west-2")


@pytest.fixture
def orchestrator_settings() -> OrchestratorSettings:
    return OrchestratorSettings(max_concurrency=8, operation_timeout_seconds=5)


@pytest.fixture
def event_publisher() -> InMemoryEventPublisher:
    return InMemoryEventPublisher()


@pytest.fixture
def orchestrator(
    orchestrator_settings: OrchestratorSettings, event_publisher: InMemoryEventPublisher,
) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(
        settings=orchestrator_settings, event_publisher=event_publisher, metrics_enabled=False,
    )


@pytest.fixture
def stack_client() -> InMemoryStackClient:
    return InMemoryStackClient()


@pytest.fixture
def builtin_registry(stack_client: InMemoryStackClient) -> ServiceRegistry:
    return create_default_registry(stack_client)


@pytest.fixture
def web_db_document() -> dict[str, Any]:
    return {
        "version": 1,
        "name": "shop",
        "environments": {
            "dev": {
                "web": {"type": "web", "dependencies": ["db"]},
                "db": {"type": "database", "size": "small"},
            },
        },
    }
