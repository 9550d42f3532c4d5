"""Context propagation between phases and from dependencies to dependents."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from handel.domain.models.contexts import (
    DeployContext,
    DeployOutputType,
    PreDeployContext,
    ServiceContext,
    ServiceState,
)
from handel.domain.models.results import DeploySummary


def dependency_pre_deploy_contexts(
    service_context: ServiceContext,
) -> dict[str, PreDeployContext]:
    """Pre-deploy outputs of every dependency, keyed by dependency name."""
    contexts: dict[str, PreDeployContext] = {}
    for dep in service_context.dependencies:
        if dep.pre_deploy_context is None:
            raise MissingDependencyOutputError(
                f"Dependency '{dep.service_name}' of service "
                f"'{service_context.service_name}' has no pre-deploy output"
            )
        contexts[dep.service_name] = dep.pre_deploy_context
    return contexts


def scope_deploy_context(
    deploy_context: DeployContext, consumer: ServiceContext
) -> DeployContext:
    """Restrict a dependency's deploy output to what the consumer may read."""
    consumed = set(consumer.deployer.consumed_deploy_output_types)
    update: dict[str, Any] = {
        "output_types": [t for t in deploy_context.output_types if t in consumed],
    }
    if DeployOutputType.ENVIRONMENT_VARIABLES.value not in consumed:
        update["environment_variables"] = {}
    if DeployOutputType.POLICIES.value not in consumed:
        update["policies"] = []
    return deploy_context.model_copy(update=update)


def dependency_deploy_contexts(service_context: ServiceContext) -> dict[str, DeployContext]:
    """Scoped deploy outputs of every dependency, keyed by dependency name."""
    contexts: dict[str, DeployContext] = {}
    for dep in service_context.dependencies:
        if dep.deploy_context is None:
            raise MissingDependencyOutputError(
                f"Dependency '{dep.service_name}' of service "
                f"'{service_context.service_name}' has no deploy output"
            )
        contexts[dep.service_name] = scope_deploy_context(dep.deploy_context, service_context)
    return contexts


def merge_deploy_contexts(service_contexts: Iterable[ServiceContext]) -> DeploySummary:
    """Union of environment variables and policies across deployed services.

    Environment variable keys are namespaced per service, so the same key
    coming from two services means the graph is inconsistent.
    """
    environment_variables: dict[str, str] = {}
    owners: dict[str, str] = {}
    policies: list[dict[str, Any]] = []

    deployed = {ServiceState.DEPLOYED, ServiceState.EVENTS_WIRED}
    for ctx in service_contexts:
        if ctx.state not in deployed or ctx.deploy_context is None:
            continue
        for key, value in ctx.deploy_context.environment_variables.items():
            owner = owners.get(key)
            if owner is not None and owner != ctx.service_name:
                raise EnvironmentVariableCollisionError(
                    f"Environment variable '{key}' is exposed by both "
                    f"'{owner}' and '{ctx.service_name}'"
                )
            owners[key] = ctx.service_name
            environment_variables[key] = value
        for policy in ctx.deploy_context.policies:
            if policy not in policies:
                policies.append(policy)

    return DeploySummary(environment_variables=environment_variables, policies=policies)


class EnvironmentVariableCollisionError(Exception):
    """Raised when two services expose the same environment variable key."""


class MissingDependencyOutputError(Exception):
    """Raised when a dependent is scheduled before its dependency produced output."""
