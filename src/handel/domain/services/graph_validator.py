"""Graph-level validation of a parsed Handel file."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

import structlog

from handel.config import RESERVED_APP_NAME
from handel.domain.models.contexts import EnvironmentContext
from handel.domain.models.handelfile import HandelFile, ServiceDefinition
from handel.domain.services.registry import ServiceRegistry
from handel.domain.services.schema_validator import parse_handel_file, validate_schema


logger = structlog.get_logger(__name__)


def _iter_services(
    handel_file: HandelFile,
) -> Iterator[tuple[str, dict[str, ServiceDefinition], str, ServiceDefinition]]:
    """Yield (env name, env definition, service name, definition) in sorted order."""
    for env_name in sorted(handel_file.environments):
        environment = handel_file.environments[env_name]
        for service_name in sorted(environment):
            yield env_name, environment, service_name, environment[service_name]


def reserved_name_error(app_name: str) -> str | None:
    if app_name == RESERVED_APP_NAME:
        return f"You may not use the name '{RESERVED_APP_NAME}' for your app name"
    return None


def check_service_types(handel_file: HandelFile, registry: ServiceRegistry) -> list[str]:
    """Every declared service type must resolve to a registered deployer."""
    errors: list[str] = []
    for _, _, _, service_def in _iter_services(handel_file):
        if not registry.supports(service_def.service_type):
            errors.append(f"Unsupported service type specified '{service_def.type}'")
    return errors


def check_service_dependencies(
    handel_file: HandelFile, registry: ServiceRegistry
) -> list[str]:
    """Every dependency must exist and produce outputs its consumer accepts."""
    errors: list[str] = []
    for _, environment, service_name, service_def in _iter_services(handel_file):
        consumer = registry.resolve(service_def.service_type)
        consumed = set(consumer.consumed_deploy_output_types)
        for dependency_name in service_def.dependencies:
            dependency_def = environment.get(dependency_name)
            if dependency_def is None:
                errors.append(
                    f"You declared a dependency '{dependency_name}' in the service "
                    f"'{service_name}' that doesn't exist"
                )
                continue

            provider = registry.resolve(dependency_def.service_type)
            produced = set(provider.produced_deploy_output_types)
            if not produced or not produced & consumed:
                errors.append(
                    f"The '{dependency_def.type}' service type is not consumable by "
                    f"the '{service_def.type}' service type"
                )
    return errors


def check_event_consumers(handel_file: HandelFile, registry: ServiceRegistry) -> list[str]:
    """Every event consumer must exist and be supported by its producer."""
    errors: list[str] = []
    for _, environment, service_name, service_def in _iter_services(handel_file):
        if not service_def.event_consumers:
            continue
        producer = registry.resolve(service_def.service_type)
        supported = set(producer.produced_events_supported_services)
        for event_consumer in service_def.event_consumers:
            consumer_name = event_consumer.service_name
            consumer_def = environment.get(consumer_name)
            if consumer_def is None:
                errors.append(
                    f"You declared an event consumer '{consumer_name}' in the service "
                    f"'{service_name}' that doesn't exist"
                )
                continue

            if consumer_def.type not in supported:
                errors.append(
                    f"The '{consumer_def.type}' service type can't consume events from "
                    f"the '{service_def.type}' service type"
                )
    return errors


def _resource_key(name: str) -> str:
    return name.upper().replace("-", "_")


def check_name_collisions(handel_file: HandelFile) -> list[str]:
    """Names must stay distinct once upper-cased with dashes as underscores.

    Environment variable keys and stack names are derived that way, so two
    such names would share provisioned resources.
    """
    errors: list[str] = []
    seen_environments: dict[str, str] = {}
    for env_name in sorted(handel_file.environments):
        other = seen_environments.setdefault(_resource_key(env_name), env_name)
        if other != env_name:
            errors.append(
                f"The environment names '{other}' and '{env_name}' collide once "
                f"case and dashes are ignored"
            )

        seen_services: dict[str, str] = {}
        for service_name in sorted(handel_file.environments[env_name]):
            other = seen_services.setdefault(_resource_key(service_name), service_name)
            if other != service_name:
                errors.append(
                    f"The service names '{other}' and '{service_name}' in the environment "
                    f"'{env_name}' collide once case and dashes are ignored"
                )
    return errors


def validate_graph(handel_file: HandelFile, registry: ServiceRegistry) -> list[str]:
    """Check names, service types, name collisions, dependencies and event wiring.

    A reserved application name is reported on its own. Unsupported types
    stop validation before the dependency and event checks, which need
    every type's deployer metadata.
    """
    reserved = reserved_name_error(handel_file.name)
    if reserved:
        return [reserved]

    errors = check_service_types(handel_file, registry)
    if errors:
        return errors

    errors = check_name_collisions(handel_file)
    errors.extend(check_service_dependencies(handel_file, registry))
    errors.extend(check_event_consumers(handel_file, registry))
    return errors


def validate_handel_file(document: Mapping[str, Any], registry: ServiceRegistry) -> list[str]:
    """Run every document-level check: reserved name, schema, then graph."""
    name = document.get("name") if isinstance(document, Mapping) else None
    if isinstance(name, str):
        reserved = reserved_name_error(name)
        if reserved:
            return [reserved]

    errors = validate_schema(document)
    if errors:
        return errors

    errors = validate_graph(parse_handel_file(document), registry)
    if errors:
        logger.info("graph_validation_failed", error_count=len(errors))
    return errors


def find_dependency_cycles(environment: EnvironmentContext) -> list[list[str]]:
    """Return the services involved in each dependency cycle.

    Uses Tarjan's strongly connected components; a component counts as a
    cycle when it has more than one member or a service depends on itself.
    """
    index_of: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    cycles: list[list[str]] = []
    counter = 0

    def strongconnect(name: str) -> None:
        nonlocal counter
        index_of[name] = lowlink[name] = counter
        counter += 1
        stack.append(name)
        on_stack.add(name)

        for dep in environment.get(name).dependency_names:
            if dep not in environment.service_contexts:
                continue
            if dep not in index_of:
                strongconnect(dep)
                lowlink[name] = min(lowlink[name], lowlink[dep])
            elif dep in on_stack:
                lowlink[name] = min(lowlink[name], index_of[dep])

        if lowlink[name] == index_of[name]:
            component: list[str] = []
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.append(member)
                if member == name:
                    break
            self_loop = name in environment.get(name).dependency_names
            if len(component) > 1 or self_loop:
                cycles.append(sorted(component))

    for service_name in sorted(environment.service_contexts):
        if service_name not in index_of:
            strongconnect(service_name)

    return sorted(cycles)
