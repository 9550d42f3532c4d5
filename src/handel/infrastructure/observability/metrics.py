"""Prometheus metrics configuration."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
)


# Application info
APP_INFO = Info("handel", "Handel deployment orchestrator info")
APP_INFO.info({
    "version": "1.0.0",
    "service": "handel-orchestrator",
})

# Orchestration metrics
ORCHESTRATIONS_TOTAL = Counter(
    "handel_orchestrations_total",
    "Total number of environment orchestration runs",
    ["result"],  # "succeeded", "failed"
)

ORCHESTRATION_DURATION = Histogram(
    "handel_orchestration_duration_seconds",
    "Wall-clock time of an environment orchestration run",
    ["result"],
    buckets=[1, 10, 30, 60, 120, 300, 600, 1800, 3600],
)

VALIDATION_ERRORS_TOTAL = Counter(
    "handel_validation_errors_total",
    "Total number of document and parameter validation errors reported",
    ["kind"],  # "document", "cycle", "check"
)

# Deployer operation metrics
OPERATIONS_TOTAL = Counter(
    "handel_deployer_operations_total",
    "Total number of deployer operations invoked",
    ["phase", "service_type", "result"],
)

OPERATION_DURATION = Histogram(
    "handel_deployer_operation_duration_seconds",
    "Time taken by a single deployer operation",
    ["phase", "service_type"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 300, 900],
)

OPERATIONS_IN_PROGRESS = Gauge(
    "handel_deployer_operations_in_progress",
    "Number of deployer operations currently running",
    ["phase"],
)
