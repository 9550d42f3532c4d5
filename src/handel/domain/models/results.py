"""Aggregate results of validation and orchestration runs."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field

from handel.domain.models.base import ValueObject
from handel.domain.models.contexts import DeployContext, LifecyclePhase


class OrchestrationStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DeploySummary(ValueObject):
    """Environment-wide union of every deployed service's exposed outputs."""

    environment_variables: dict[str, str] = Field(default_factory=dict)
    policies: list[dict[str, Any]] = Field(default_factory=list)


class OrchestrationResult(ValueObject):
    """Outcome of one environment's orchestration run.

    A failed run carries the accumulated errors of the phase that failed;
    a successful run carries the merged deploy summary.
    """

    app_name: str
    environment_name: str
    status: OrchestrationStatus
    failed_phase: LifecyclePhase | None = None
    errors: list[str] = Field(default_factory=list)
    service_errors: dict[str, list[str]] = Field(default_factory=dict)
    skipped_services: list[str] = Field(default_factory=list)
    deployed_services: list[str] = Field(default_factory=list)
    deploy_contexts: dict[str, DeployContext] = Field(default_factory=dict)
    summary: DeploySummary = Field(default_factory=DeploySummary)
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == OrchestrationStatus.SUCCEEDED

    @property
    def environment_variables(self) -> dict[str, str]:
        return dict(self.summary.environment_variables)

    @property
    def policies(self) -> list[dict[str, Any]]:
        return list(self.summary.policies)
