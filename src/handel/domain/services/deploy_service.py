"""End-to-end deploy and check operations over a raw Handel file."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from handel.config import get_settings
from handel.domain.models.account import AccountConfig
from handel.domain.models.contexts import EnvironmentContext, LifecyclePhase
from handel.domain.models.results import OrchestrationResult, OrchestrationStatus
from handel.domain.services.environment_builder import (
    create_environment_context,
    EnvironmentNotFoundError,
)
from handel.domain.services.graph_validator import validate_handel_file
from handel.domain.services.lifecycle import LifecycleOrchestrator
from handel.domain.services.registry import ServiceRegistry
from handel.domain.services.schema_validator import parse_handel_file
from handel.infrastructure.observability import metrics


logger = structlog.get_logger(__name__)


class DeployService:
    """Validates a Handel file, builds environment graphs and runs them.

    Document validation happens once for the whole file; the requested
    environments are then orchestrated concurrently, each with its own
    freshly built graph.
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        orchestrator: LifecycleOrchestrator | None = None,
        metrics_enabled: bool | None = None,
    ) -> None:
        self._registry = registry
        self._orchestrator = orchestrator or LifecycleOrchestrator()
        self._metrics_enabled = (
            get_settings().observability.metrics_enabled
            if metrics_enabled is None else metrics_enabled
        )

    def validate(self, document: Mapping[str, Any]) -> list[str]:
        """Return every schema and graph error in the document."""
        errors = validate_handel_file(document, self._registry)
        if errors and self._metrics_enabled:
            metrics.VALIDATION_ERRORS_TOTAL.labels(kind="document").inc(len(errors))
        return errors

    def build_environment(
        self,
        document: Mapping[str, Any],
        environment_name: str,
        account_config: AccountConfig,
    ) -> EnvironmentContext:
        """Build the service graph of one environment of a valid document."""
        errors = self.validate(document)
        if errors:
            raise HandelFileValidationError(errors)
        return create_environment_context(
            parse_handel_file(document), environment_name, account_config, self._registry,
        )

    async def check(
        self, document: Mapping[str, Any], account_config: AccountConfig
    ) -> dict[str, list[str]]:
        """Validate the document and run the check phase of every environment.

        Document-level errors are reported under the empty key.
        """
        errors = self.validate(document)
        if errors:
            return {"": errors}

        handel_file = parse_handel_file(document)
        results: dict[str, list[str]] = {}
        for environment_name in handel_file.environments:
            environment = create_environment_context(
                handel_file, environment_name, account_config, self._registry,
            )
            results[environment_name] = await self._orchestrator.check_environment(environment)
        return results

    async def deploy(
        self,
        document: Mapping[str, Any],
        environment_names: Sequence[str],
        account_config: AccountConfig,
    ) -> list[OrchestrationResult]:
        """Deploy the requested environments of the document.

        An invalid document yields one failed result per requested
        environment carrying the validation errors; nothing is built or
        deployed in that case. Unknown environment names raise
        :class:`EnvironmentNotFoundError` before anything runs.
        """
        errors = self.validate(document)
        if errors:
            logger.info("handel_file_invalid", error_count=len(errors))
            name = document.get("name") if isinstance(document, Mapping) else None
            return [
                OrchestrationResult(
                    app_name=str(name or ""),
                    environment_name=environment_name,
                    status=OrchestrationStatus.FAILED,
                    failed_phase=LifecyclePhase.VALIDATION,
                    errors=list(errors),
                )
                for environment_name in environment_names
            ]

        handel_file = parse_handel_file(document)
        missing = [name for name in environment_names if name not in handel_file.environments]
        if missing:
            raise EnvironmentNotFoundError(
                f"Can't find the requested environment in the deploy spec: {', '.join(missing)}"
            )

        environments = [
            create_environment_context(handel_file, name, account_config, self._registry)
            for name in environment_names
        ]
        logger.info(
            "deploy_requested",
            app=handel_file.name,
            environments=list(environment_names),
        )
        return list(await asyncio.gather(
            *(self._orchestrator.deploy_environment(env) for env in environments)
        ))


class HandelFileValidationError(Exception):
    """Raised when an environment is built from an invalid Handel file."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = errors
