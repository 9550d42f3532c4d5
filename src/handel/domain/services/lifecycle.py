"""Phased lifecycle orchestrator that walks an environment's service graph."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

import structlog

from handel.config import OrchestratorSettings, get_settings
from handel.domain.events.lifecycle_events import (
    OrchestrationCompleted,
    OrchestrationFailed,
    OrchestrationStarted,
    ServicePhaseCompleted,
    ServicePhaseFailed,
)
from handel.domain.models.base import DomainEvent
from handel.domain.models.contexts import (
    BindContext,
    ConsumeEventsContext,
    DeployContext,
    EnvironmentContext,
    LifecyclePhase,
    PreDeployContext,
    ProduceEventsContext,
    ServiceContext,
    ServiceState,
)
from handel.domain.models.results import (
    DeploySummary,
    OrchestrationResult,
    OrchestrationStatus,
)
from handel.domain.ports.deployer import ProvisioningError
from handel.domain.ports.services import EventPublisher
from handel.domain.services.graph_validator import find_dependency_cycles
from handel.domain.services.propagation import (
    dependency_deploy_contexts,
    dependency_pre_deploy_contexts,
    EnvironmentVariableCollisionError,
    merge_deploy_contexts,
)
from handel.infrastructure.observability import metrics
from handel.infrastructure.observability.tracing import get_tracer, phase_span


logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)

T = TypeVar("T")

NodeOperation = Callable[[ServiceContext], Awaitable[None]]


class _RunState:
    """Errors and skips accumulated during one environment run."""

    def __init__(self) -> None:
        self.service_errors: dict[str, list[str]] = {}
        self.skipped: list[str] = []
        self.failed_phase: LifecyclePhase | None = None

    def record_error(self, service_name: str, phase: LifecyclePhase, message: str) -> None:
        self.service_errors.setdefault(service_name, []).append(message)
        if self.failed_phase is None:
            self.failed_phase = phase

    @property
    def errors(self) -> list[str]:
        return [
            message
            for name in sorted(self.service_errors)
            for message in self.service_errors[name]
        ]


class LifecycleOrchestrator:
    """Runs check, pre-deploy, bind, deploy and event wiring for an environment.

    Each deployer call is an independent unit of work executed on a bounded
    pool of concurrent tasks. Pre-deploy runs fully in parallel; bind and
    deploy start for a service only after every one of its dependencies
    finished the same phase. A failure stops the failing service and
    everything downstream of it while unrelated branches carry on.
    Services deployed outside of the run take part in every phase but
    check, through the deployer's external reference lookups.
    """

    def __init__(
        self,
        settings: OrchestratorSettings | None = None,
        event_publisher: EventPublisher | None = None,
        metrics_enabled: bool | None = None,
    ) -> None:
        app_settings = get_settings()
        self._settings = settings or app_settings.orchestrator
        self._event_publisher = event_publisher
        self._metrics_enabled = (
            app_settings.observability.metrics_enabled
            if metrics_enabled is None else metrics_enabled
        )
        self._semaphore: asyncio.Semaphore | None = None
        self._semaphore_loop: asyncio.AbstractEventLoop | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def check_environment(self, environment: EnvironmentContext) -> list[str]:
        """Run only the check phase and return every parameter error."""
        service_errors = await self._check_phase(environment)
        return [
            message
            for name in sorted(service_errors)
            for message in service_errors[name]
        ]

    async def deploy_environment(self, environment: EnvironmentContext) -> OrchestrationResult:
        """Deploy every service of the environment."""
        started = time.monotonic()

        with structlog.contextvars.bound_contextvars(
            app=environment.app_name, environment=environment.environment_name,
        ):
            logger.info("orchestration_started", service_count=len(environment.service_contexts))
            await self._publish(OrchestrationStarted(
                app_name=environment.app_name,
                environment_name=environment.environment_name,
                service_count=len(environment.service_contexts),
                correlation_id=environment.environment_name,
            ))

            cycles = find_dependency_cycles(environment)
            if cycles:
                errors = [
                    f"Dependency cycle detected between services: {', '.join(cycle)}"
                    for cycle in cycles
                ]
                self._count_validation_errors("cycle", len(errors))
                logger.error("dependency_cycle_detected", cycles=cycles)
                return await self._failed_result(
                    environment, LifecyclePhase.VALIDATION, errors, {}, [], started,
                )

            check_errors = await self._check_phase(environment)
            if check_errors:
                errors = [
                    message
                    for name in sorted(check_errors)
                    for message in check_errors[name]
                ]
                return await self._failed_result(
                    environment, LifecyclePhase.CHECK, errors, check_errors, [], started,
                )

            run = _RunState()

            await self._run_phase(
                LifecyclePhase.PRE_DEPLOY, environment.services, self._pre_deploy_service, run,
                wait_for_dependencies=False,
            )
            await self._run_phase(
                LifecyclePhase.BIND, environment.services, self._bind_service, run,
            )
            await self._run_phase(
                LifecyclePhase.DEPLOY, environment.services, self._deploy_service, run,
            )
            await self._events_phase(environment, run)

            if run.service_errors:
                return await self._failed_result(
                    environment, run.failed_phase or LifecyclePhase.DEPLOY,
                    run.errors, run.service_errors, run.skipped, started,
                )

            try:
                summary = merge_deploy_contexts(environment.services)
            except EnvironmentVariableCollisionError as exc:
                logger.exception("environment_variable_collision", error=str(exc))
                return await self._failed_result(
                    environment, LifecyclePhase.DEPLOY, [str(exc)], {}, [], started,
                )

            return await self._succeeded_result(environment, summary, started)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _check_phase(self, environment: EnvironmentContext) -> dict[str, list[str]]:
        """Check every managed service and gather all parameter errors."""
        managed = [ctx for ctx in environment.services if not ctx.external]

        async def check(ctx: ServiceContext) -> tuple[ServiceContext, list[str]]:
            try:
                errors = await self._invoke(
                    ctx, LifecyclePhase.CHECK, asyncio.to_thread(ctx.deployer.check, ctx),
                )
            except Exception as e:
                logger.exception("service_check_raised", service=ctx.service_name, error=str(e))
                errors = [f"Checking service '{ctx.service_name}' raised an error: {e}"]
            return ctx, list(errors or [])

        with phase_span(tracer, LifecyclePhase.CHECK.value, service_count=len(managed)):
            results = await asyncio.gather(*(check(ctx) for ctx in managed))

        service_errors: dict[str, list[str]] = {}
        for ctx, errors in results:
            if errors:
                service_errors[ctx.service_name] = errors
                logger.info("service_check_failed", service=ctx.service_name, errors=errors)
            elif ctx.state == ServiceState.NOT_STARTED:
                ctx.transition_to(ServiceState.CHECKED)

        self._count_validation_errors("check", sum(len(e) for e in service_errors.values()))
        return service_errors

    async def _run_phase(
        self,
        phase: LifecyclePhase,
        services: list[ServiceContext],
        operation: NodeOperation,
        run: _RunState,
        wait_for_dependencies: bool = True,
    ) -> None:
        """Run ``operation`` for every service, one task per service.

        With ``wait_for_dependencies`` a service's task first waits for the
        tasks of its dependencies in the same phase and only proceeds when
        all of them succeeded.
        """
        tasks: dict[str, asyncio.Task[bool]] = {}

        async def run_service(ctx: ServiceContext) -> bool:
            if wait_for_dependencies:
                waits = [
                    tasks[dep.service_name]
                    for dep in ctx.dependencies
                    if dep.service_name in tasks
                ]
                await asyncio.gather(*waits)
                failed = [dep.service_name for dep in ctx.dependencies if dep.is_failed]
                if failed and not ctx.is_failed:
                    self._skip(ctx, phase, failed, run)
            if ctx.is_failed:
                return False

            try:
                await operation(ctx)
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.exception(
                    "service_phase_failed",
                    service=ctx.service_name, phase=phase.value, error=message,
                )
                ctx.fail(message)
                run.record_error(ctx.service_name, phase, message)
                await self._publish(ServicePhaseFailed(
                    environment_name=ctx.environment_name,
                    service_name=ctx.service_name,
                    phase=phase.value,
                    error_message=message,
                    correlation_id=ctx.environment_name,
                ))
                return False

            await self._publish(ServicePhaseCompleted(
                environment_name=ctx.environment_name,
                service_name=ctx.service_name,
                phase=phase.value,
                correlation_id=ctx.environment_name,
            ))
            return True

        with phase_span(tracer, phase.value, service_count=len(services)):
            logger.info("phase_started", phase=phase.value, service_count=len(services))
            for ctx in services:
                tasks[ctx.service_name] = asyncio.create_task(
                    run_service(ctx), name=f"{phase.value}:{ctx.service_name}",
                )
            results = await asyncio.gather(*tasks.values())
            logger.info(
                "phase_finished",
                phase=phase.value,
                succeeded=sum(1 for ok in results if ok),
                failed=sum(1 for ok in results if not ok),
            )

    async def _events_phase(self, environment: EnvironmentContext, run: _RunState) -> None:
        """Wire every event edge whose producer and consumer both deployed."""
        phase = LifecyclePhase.EVENTS

        async def wire(producer: ServiceContext, consumer: ServiceContext) -> None:
            if producer.is_failed or consumer.is_failed:
                logger.info(
                    "event_wiring_skipped",
                    producer=producer.service_name, consumer=consumer.service_name,
                )
                return
            producer_deploy = producer.deploy_context
            consumer_deploy = consumer.deploy_context
            assert producer_deploy is not None and consumer_deploy is not None

            current = consumer
            try:
                if consumer.external:
                    consume = consumer.deployer.get_consume_events_context_for_external_ref
                else:
                    consume = consumer.deployer.consume_events
                consumed = await self._invoke(
                    consumer, phase,
                    consume(consumer, consumer_deploy, producer, producer_deploy),
                )
                consumer.record_consume_events(
                    producer.service_name, _expect(consumed, ConsumeEventsContext, consumer, phase),
                )
                current = producer
                produced = await self._invoke(
                    producer, phase,
                    producer.deployer.produce_events(
                        producer, producer_deploy, consumer, consumer_deploy,
                    ),
                )
                producer.record_produce_events(
                    consumer.service_name, _expect(produced, ProduceEventsContext, producer, phase),
                )
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.exception(
                    "event_wiring_failed",
                    producer=producer.service_name,
                    consumer=consumer.service_name,
                    service=current.service_name,
                    error=message,
                )
                current.fail(message)
                run.record_error(current.service_name, phase, message)
                await self._publish(ServicePhaseFailed(
                    environment_name=current.environment_name,
                    service_name=current.service_name,
                    phase=phase.value,
                    error_message=message,
                    correlation_id=current.environment_name,
                ))

        edges = environment.event_edges()
        with phase_span(tracer, phase.value, edge_count=len(edges)):
            logger.info("phase_started", phase=phase.value, edge_count=len(edges))
            await asyncio.gather(*(wire(p, c) for p, c in edges))

        for ctx in environment.services:
            if ctx.state == ServiceState.DEPLOYED:
                ctx.transition_to(ServiceState.EVENTS_WIRED)

    # ------------------------------------------------------------------
    # Per-service operations
    # ------------------------------------------------------------------

    async def _pre_deploy_service(self, ctx: ServiceContext) -> None:
        if ctx.external:
            call = ctx.deployer.get_pre_deploy_context_for_external_ref(ctx)
        else:
            call = ctx.deployer.pre_deploy(ctx)
        result = await self._invoke(ctx, LifecyclePhase.PRE_DEPLOY, call)
        ctx.record_pre_deploy(_expect(result, PreDeployContext, ctx, LifecyclePhase.PRE_DEPLOY))

    async def _bind_service(self, ctx: ServiceContext) -> None:
        dependencies = dependency_pre_deploy_contexts(ctx)
        if ctx.external:
            call = ctx.deployer.get_bind_context_for_external_ref(ctx, dependencies)
        else:
            call = ctx.deployer.bind(ctx, dependencies)
        result = await self._invoke(ctx, LifecyclePhase.BIND, call)
        ctx.record_bind(_expect(result, BindContext, ctx, LifecyclePhase.BIND))

    async def _deploy_service(self, ctx: ServiceContext) -> None:
        if ctx.external:
            result = await self._invoke(
                ctx, LifecyclePhase.DEPLOY,
                ctx.deployer.get_deploy_context_for_external_ref(ctx),
            )
        else:
            assert ctx.pre_deploy_context is not None
            result = await self._invoke(
                ctx, LifecyclePhase.DEPLOY,
                ctx.deployer.deploy(
                    ctx, ctx.pre_deploy_context, dependency_deploy_contexts(ctx),
                ),
            )
        deploy_context = _expect(result, DeployContext, ctx, LifecyclePhase.DEPLOY)
        ctx.record_deploy(deploy_context)
        logger.info(
            "service_deployed",
            service=ctx.service_name,
            external=ctx.external,
            environment_variables=len(deploy_context.environment_variables),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _invoke(
        self, ctx: ServiceContext, phase: LifecyclePhase, call: Awaitable[T]
    ) -> T:
        """Run one deployer call on the worker pool with a timeout."""
        service_type = str(ctx.service_type)
        async with self._worker_pool():
            if self._metrics_enabled:
                metrics.OPERATIONS_IN_PROGRESS.labels(phase=phase.value).inc()
            started = time.monotonic()
            outcome = "failed"
            try:
                result = await asyncio.wait_for(
                    call, timeout=self._settings.operation_timeout_seconds,
                )
                outcome = "succeeded"
                return result
            except asyncio.TimeoutError:
                raise ProvisioningError(
                    f"The {phase.value} operation for service '{ctx.service_name}' "
                    f"timed out after {self._settings.operation_timeout_seconds} seconds"
                ) from None
            finally:
                if self._metrics_enabled:
                    metrics.OPERATIONS_IN_PROGRESS.labels(phase=phase.value).dec()
                    metrics.OPERATIONS_TOTAL.labels(
                        phase=phase.value, service_type=service_type, result=outcome,
                    ).inc()
                    metrics.OPERATION_DURATION.labels(
                        phase=phase.value, service_type=service_type,
                    ).observe(time.monotonic() - started)

    def _worker_pool(self) -> asyncio.Semaphore:
        """Semaphore bounding in-flight deployer calls on the running loop."""
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self._settings.max_concurrency)
            self._semaphore_loop = loop
        return self._semaphore

    def _skip(
        self,
        ctx: ServiceContext,
        phase: LifecyclePhase,
        failed_dependencies: list[str],
        run: _RunState,
    ) -> None:
        reason = (
            f"Skipped {phase.value} because dependencies failed: "
            f"{', '.join(sorted(failed_dependencies))}"
        )
        logger.warning("service_skipped", service=ctx.service_name, phase=phase.value)
        ctx.fail(reason)
        run.skipped.append(ctx.service_name)

    def _count_validation_errors(self, kind: str, count: int) -> None:
        if self._metrics_enabled and count:
            metrics.VALIDATION_ERRORS_TOTAL.labels(kind=kind).inc(count)

    async def _publish(self, event: DomainEvent) -> None:
        if self._event_publisher is None:
            return
        await self._event_publisher.publish(event.event_type, event.model_dump(mode="json"))

    async def _failed_result(
        self,
        environment: EnvironmentContext,
        phase: LifecyclePhase,
        errors: list[str],
        service_errors: dict[str, list[str]],
        skipped: list[str],
        started: float,
    ) -> OrchestrationResult:
        duration = time.monotonic() - started
        self._observe_run(OrchestrationStatus.FAILED, duration)
        logger.error(
            "orchestration_failed", phase=phase.value, error_count=len(errors), errors=errors,
        )
        await self._publish(OrchestrationFailed(
            app_name=environment.app_name,
            environment_name=environment.environment_name,
            phase=phase.value,
            error_count=len(errors),
            correlation_id=environment.environment_name,
        ))
        return OrchestrationResult(
            app_name=environment.app_name,
            environment_name=environment.environment_name,
            status=OrchestrationStatus.FAILED,
            failed_phase=phase,
            errors=errors,
            service_errors=service_errors,
            skipped_services=sorted(skipped),
            deployed_services=_deployed_names(environment.services),
            deploy_contexts=_deploy_contexts(environment.services),
            duration_seconds=duration,
        )

    async def _succeeded_result(
        self,
        environment: EnvironmentContext,
        summary: DeploySummary,
        started: float,
    ) -> OrchestrationResult:
        duration = time.monotonic() - started
        self._observe_run(OrchestrationStatus.SUCCEEDED, duration)
        logger.info("orchestration_completed", duration_seconds=round(duration, 3))
        await self._publish(OrchestrationCompleted(
            app_name=environment.app_name,
            environment_name=environment.environment_name,
            correlation_id=environment.environment_name,
        ))
        return OrchestrationResult(
            app_name=environment.app_name,
            environment_name=environment.environment_name,
            status=OrchestrationStatus.SUCCEEDED,
            deployed_services=_deployed_names(environment.services),
            deploy_contexts=_deploy_contexts(environment.services),
            summary=summary,
            duration_seconds=duration,
        )

    def _observe_run(self, status: OrchestrationStatus, duration: float) -> None:
        if not self._metrics_enabled:
            return
        metrics.ORCHESTRATIONS_TOTAL.labels(result=status.value).inc()
        metrics.ORCHESTRATION_DURATION.labels(result=status.value).observe(duration)


def _expect(value: Any, expected: type[T], ctx: ServiceContext, phase: LifecyclePhase) -> T:
    if not isinstance(value, expected):
        raise ProvisioningError(
            f"Deployer for '{ctx.service_type}' returned {type(value).__name__} from "
            f"{phase.value}, expected {expected.__name__}"
        )
    return value


def _deployed_names(services: Iterable[ServiceContext]) -> list[str]:
    return sorted(
        ctx.service_name for ctx in services
        if ctx.state in {ServiceState.DEPLOYED, ServiceState.EVENTS_WIRED}
    )


def _deploy_contexts(services: Iterable[ServiceContext]) -> dict[str, DeployContext]:
    return {
        ctx.service_name: ctx.deploy_context
        for ctx in services
        if ctx.deploy_context is not None
    }
