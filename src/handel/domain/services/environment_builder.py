"""Builds the in-memory service graph for one environment."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from handel.domain.models.account import AccountConfig
from handel.domain.models.contexts import EnvironmentContext, ServiceContext
from handel.domain.models.handelfile import HandelFile
from handel.domain.services.registry import ServiceRegistry


logger = structlog.get_logger(__name__)


def create_environment_context(
    handel_file: HandelFile,
    environment_name: str,
    account_config: AccountConfig,
    registry: ServiceRegistry,
) -> EnvironmentContext:
    """Materialize the requested environment of an already validated file.

    One :class:`ServiceContext` is created per declared service, then
    dependency and event-consumer names are resolved to those nodes.
    """
    environment_def = handel_file.environments.get(environment_name)
    if environment_def is None:
        raise EnvironmentNotFoundError(
            f"Can't find the requested environment in the deploy spec: {environment_name}"
        )

    environment = EnvironmentContext(
        app_name=handel_file.name,
        environment_name=environment_name,
        account_config=account_config,
        tags=dict(handel_file.tags),
    )

    for service_name, service_def in environment_def.items():
        environment.service_contexts[service_name] = ServiceContext(
            app_name=handel_file.name,
            environment_name=environment_name,
            service_name=service_name,
            service_type=service_def.service_type,
            params=service_def.params,
            account_config=account_config,
            deployer=registry.resolve(service_def.service_type),
            tags={**handel_file.tags, **service_def.tags},
            external=service_def.external,
        )

    for service_name, service_def in environment_def.items():
        node = environment.service_contexts[service_name]
        node.dependencies = [
            environment.service_contexts[dep] for dep in _unique(service_def.dependencies)
        ]
        node.event_consumers = [
            environment.service_contexts[name]
            for name in _unique(c.service_name for c in service_def.event_consumers)
        ]

    logger.info(
        "environment_context_built",
        app=handel_file.name,
        environment=environment_name,
        service_count=len(environment.service_contexts),
    )
    return environment


def _unique(names: Iterable[str]) -> list[str]:
    """Drop repeated names, keeping first occurrence order."""
    return list(dict.fromkeys(names))


class EnvironmentNotFoundError(Exception):
    """Raised when the requested environment is not declared in the document."""
