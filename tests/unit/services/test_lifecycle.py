"""Unit tests for the phased lifecycle orchestrator."""

from __future__ import annotations

from typing import Any

import pytest

from handel.config import OrchestratorSettings
from handel.domain.models.contexts import EnvironmentContext, LifecyclePhase, ServiceState
from handel.domain.models.results import OrchestrationStatus
from handel.domain.services.environment_builder import create_environment_context
from handel.domain.services.lifecycle import LifecycleOrchestrator
from handel.domain.services.registry import ServiceRegistry
from handel.domain.services.schema_validator import parse_handel_file


def build(
    services: dict[str, Any], registry: ServiceRegistry, account_config
) -> EnvironmentContext:
    handel_file = parse_handel_file({
        "version": 1, "name": "shop", "environments": {"dev": services},
    })
    return create_environment_context(handel_file, "dev", account_config, registry)


class TestDeployOrdering:
    @pytest.mark.asyncio
    async def test_dependency_deploys_first(
        self, make_deployer, account_config, orchestrator, call_log
    ) -> None:
        registry = ServiceRegistry()
        registry.register_builtin("database", make_deployer(produced=["database-ref"], delay=0.05))
        registry.register_builtin("web", make_deployer(consumed=["database-ref"], delay=0.05))
        environment = build({
            "web": {"type": "web", "dependencies": ["db"]},
            "db": {"type": "database"},
        }, registry, account_config)

        result = await orchestrator.deploy_environment(environment)

        assert result.status == OrchestrationStatus.SUCCEEDED
        assert result.deployed_services == ["db", "web"]
        for phase in ("bind", "deploy"):
            calls = call_log.for_phase(phase)
            assert calls["db"]["finished"] <= calls["web"]["started"]

    @pytest.mark.asyncio
    async def test_pre_deploy_runs_in_parallel(
        self, make_deployer, account_config, orchestrator, call_log
    ) -> None:
        registry = ServiceRegistry()
        registry.register_builtin("database", make_deployer(produced=["database-ref"], delay=0.1))
        registry.register_builtin("web", make_deployer(consumed=["database-ref"], delay=0.1))
        environment = build({
            "web": {"type": "web", "dependencies": ["db"]},
            "db": {"type": "database"},
        }, registry, account_config)

        await orchestrator.deploy_environment(environment)

        calls = call_log.for_phase("pre_deploy")
        assert calls["db"]["started"] < calls["web"]["finished"]
        assert calls["web"]["started"] < calls["db"]["finished"]

    @pytest.mark.asyncio
    async def test_dependents_receive_scoped_outputs(
        self, fake_registry, account_config, orchestrator, call_log, web_db_document
    ) -> None:
        environment = create_environment_context(
            parse_handel_file(web_db_document), "dev", account_config, fake_registry,
        )

        result = await orchestrator.deploy_environment(environment)

        assert result.succeeded
        web_deploy = call_log.for_phase("deploy")["web"]
        assert web_deploy["dependencies"] == ["db"]
        received = web_deploy["received"]["db"]
        assert received.output_types == ["database-ref"]
        assert received.environment_variables == {}
        bind = call_log.for_phase("bind")["web"]
        assert bind["dependencies"] == ["db"]

    @pytest.mark.asyncio
    async def test_summary_merges_environment_variables(
        self, fake_registry, account_config, orchestrator, web_db_document
    ) -> None:
        environment = create_environment_context(
            parse_handel_file(web_db_document), "dev", account_config, fake_registry,
        )

        result = await orchestrator.deploy_environment(environment)

        assert result.environment_variables == {
            "DATABASE_SHOP_DEV_DB_URL": "db.example.com",
            "WEB_SHOP_DEV_WEB_URL": "web.example.com",
        }
        assert len(result.policies) == 2
        assert sorted(result.deploy_contexts) == ["db", "web"]
        assert all(ctx.state == ServiceState.EVENTS_WIRED for ctx in environment.services)

    @pytest.mark.asyncio
    async def test_environment_variable_collision_fails_run(
        self, make_deployer, account_config, orchestrator
    ) -> None:
        registry = ServiceRegistry()
        registry.register_builtin("database", make_deployer(
            produced=["database-ref"], environment_variables={"SHARED_URL": "db.example.com"},
        ))
        registry.register_builtin("static", make_deployer(
            environment_variables={"SHARED_URL": "cdn.example.com"},
        ))
        environment = build({
            "db": {"type": "database"},
            "cdn": {"type": "static"},
        }, registry, account_config)

        result = await orchestrator.deploy_environment(environment)

        assert result.status == OrchestrationStatus.FAILED
        assert result.failed_phase == LifecyclePhase.DEPLOY
        assert len(result.errors) == 1
        assert "SHARED_URL" in result.errors[0]
        assert "'db'" in result.errors[0] and "'cdn'" in result.errors[0]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(
        self, make_deployer, account_config, event_publisher, call_log
    ) -> None:
        registry = ServiceRegistry()
        registry.register_builtin("static", make_deployer(delay=0.02))
        environment = build(
            {name: {"type": "static"} for name in ("a", "b", "c")}, registry, account_config,
        )
        orchestrator = LifecycleOrchestrator(
            settings=OrchestratorSettings(max_concurrency=1, operation_timeout_seconds=5),
            event_publisher=event_publisher,
            metrics_enabled=False,
        )

        await orchestrator.deploy_environment(environment)

        calls = sorted(call_log.for_phase("pre_deploy").values(), key=lambda c: c["started"])
        for earlier, later in zip(calls, calls[1:]):
            assert earlier["finished"] <= later["started"]


class TestCheckPhase:
    @pytest.mark.asyncio
    async def test_check_errors_aggregated(
        self, make_deployer, account_config, orchestrator, call_log
    ) -> None:
        registry = ServiceRegistry()
        registry.register_builtin("a", make_deployer(check_errors=["'size' is required"]))
        registry.register_builtin("b", make_deployer(check_errors=["'name' is invalid", "'port' is missing"]))
        registry.register_builtin("c", make_deployer())
        environment = build({
            "one": {"type": "a"}, "two": {"type": "b"}, "three": {"type": "c"},
        }, registry, account_config)

        result = await orchestrator.deploy_environment(environment)

        assert result.status == OrchestrationStatus.FAILED
        assert result.failed_phase == LifecyclePhase.CHECK
        assert result.errors == ["'size' is required", "'name' is invalid", "'port' is missing"]
        assert result.service_errors == {
            "one": ["'size' is required"],
            "two": ["'name' is invalid", "'port' is missing"],
        }
        assert call_log.services("check") == {"one", "two", "three"}
        assert call_log.services("pre_deploy") == set()

    @pytest.mark.asyncio
    async def test_check_environment_only_checks(
        self, make_deployer, account_config, orchestrator, call_log
    ) -> None:
        registry = ServiceRegistry()
        registry.register_builtin("a", make_deployer(check_errors=["bad"]))
        environment = build({"one": {"type": "a"}}, registry, account_config)

        assert await orchestrator.check_environment(environment) == ["bad"]
        assert {c["phase"] for c in call_log.calls} == {"check"}


class TestFailures:
    @pytest.mark.asyncio
    async def test_failure_skips_dependents_only(
        self, make_deployer, account_config, orchestrator, call_log
    ) -> None:
        registry = ServiceRegistry()
        registry.register_builtin("flaky", make_deployer(produced=["database-ref"], fail_phases=["deploy"]))
        registry.register_builtin("database", make_deployer(produced=["database-ref"], delay=0.05))
        registry.register_builtin("web", make_deployer(consumed=["database-ref"]))
        environment = build({
            "db": {"type": "flaky"},
            "web": {"type": "web", "dependencies": ["db"]},
            "cache": {"type": "database"},
        }, registry, account_config)

        result = await orchestrator.deploy_environment(environment)

        assert result.status == OrchestrationStatus.FAILED
        assert result.failed_phase == LifecyclePhase.DEPLOY
        assert result.errors == ["deploy failed for db"]
        assert result.skipped_services == ["web"]
        assert result.deployed_services == ["cache"]
        assert environment.get("web").state == ServiceState.FAILED
        assert "db" in environment.get("web").failure_reason
        assert call_log.services("deploy") == {"db", "cache"}

    @pytest.mark.asyncio
    async def test_pre_deploy_failure_stops_bind_of_dependents(
        self, make_deployer, account_config, orchestrator, call_log
    ) -> None:
        registry = ServiceRegistry()
        registry.register_builtin("flaky", make_deployer(produced=["database-ref"], fail_phases=["pre_deploy"]))
        registry.register_builtin("web", make_deployer(consumed=["database-ref"]))
        environment = build({
            "db": {"type": "flaky"},
            "web": {"type": "web", "dependencies": ["db"]},
        }, registry, account_config)

        result = await orchestrator.deploy_environment(environment)

        assert result.failed_phase == LifecyclePhase.PRE_DEPLOY
        assert call_log.services("pre_deploy") == {"db", "web"}
        assert call_log.services("bind") == set()
        assert result.skipped_services == ["web"]

    @pytest.mark.asyncio
    async def test_cycle_reported_before_any_deployer_call(
        self, fake_registry, account_config, orchestrator, call_log
    ) -> None:
        environment = build({
            "a": {"type": "web", "dependencies": ["b"]},
            "b": {"type": "web", "dependencies": ["a"]},
        }, fake_registry, account_config)

        result = await orchestrator.deploy_environment(environment)

        assert result.failed_phase == LifecyclePhase.VALIDATION
        assert result.errors == ["Dependency cycle detected between services: a, b"]
        assert call_log.calls == []

    @pytest.mark.asyncio
    async def test_operation_timeout(
        self, make_deployer, account_config, event_publisher
    ) -> None:
        registry = ServiceRegistry()
        registry.register_builtin("slow", make_deployer(delay=1.0))
        environment = build({"one": {"type": "slow"}}, registry, account_config)
        orchestrator = LifecycleOrchestrator(
            settings=OrchestratorSettings(max_concurrency=2, operation_timeout_seconds=0.05),
            event_publisher=event_publisher,
            metrics_enabled=False,
        )

        result = await orchestrator.deploy_environment(environment)

        assert result.failed_phase == LifecyclePhase.PRE_DEPLOY
        assert "timed out" in result.errors[0]


class TestEvents:
    @pytest.mark.asyncio
    async def test_event_edges_wired(
        self, fake_registry, account_config, orchestrator, call_log
    ) -> None:
        environment = build({
            "jobs": {"type": "queue", "event_consumers": [{"service_name": "web"}]},
            "web": {"type": "web"},
        }, fake_registry, account_config)

        result = await orchestrator.deploy_environment(environment)

        assert result.succeeded
        consumed = call_log.for_phase("consume_events")["web"]
        produced = call_log.for_phase("produce_events")["jobs"]
        assert consumed["producer"] == "jobs"
        assert produced["consumer"] == "web"
        assert consumed["finished"] <= produced["started"]
        assert environment.get("web").consume_events_contexts["jobs"].producer_name == "jobs"
        assert environment.get("jobs").produce_events_contexts["web"].consumer_name == "web"

    @pytest.mark.asyncio
    async def test_unsupported_event_wiring_fails(
        self, make_deployer, account_config, orchestrator
    ) -> None:
        registry = ServiceRegistry()
        registry.register_builtin("queue", make_deployer(event_consumers=["database"], produces_events=True))
        registry.register_builtin("database", make_deployer())
        environment = build({
            "jobs": {"type": "queue", "event_consumers": [{"service_name": "db"}]},
            "db": {"type": "database"},
        }, registry, account_config)

        result = await orchestrator.deploy_environment(environment)

        assert result.failed_phase == LifecyclePhase.EVENTS
        assert list(result.service_errors) == ["db"]
        assert environment.get("db").is_failed
        assert environment.get("jobs").state == ServiceState.EVENTS_WIRED

    @pytest.mark.asyncio
    async def test_repeated_consumer_wired_once(
        self, fake_registry, account_config, orchestrator, call_log
    ) -> None:
        environment = build({
            "jobs": {
                "type": "queue",
                "event_consumers": [{"service_name": "web"}, {"service_name": "web"}],
            },
            "web": {"type": "web", "dependencies": ["jobs", "jobs"]},
        }, fake_registry, account_config)

        result = await orchestrator.deploy_environment(environment)

        assert result.succeeded
        assert [c["service"] for c in call_log.calls if c["phase"] == "consume_events"] == ["web"]
        assert [c["service"] for c in call_log.calls if c["phase"] == "produce_events"] == ["jobs"]
        assert call_log.for_phase("deploy")["web"]["dependencies"] == ["jobs"]


class TestExternalReferences:
    @pytest.mark.asyncio
    async def test_external_reference_resolved(
        self, make_deployer, account_config, orchestrator, call_log
    ) -> None:
        registry = ServiceRegistry()
        registry.register_builtin("database", make_deployer(produced=["database-ref"]))
        registry.register_builtin("web", make_deployer(consumed=["database-ref"]))
        environment = build({
            "db": {"type": "database", "external": True},
            "web": {"type": "web", "dependencies": ["db"]},
        }, registry, account_config)

        result = await orchestrator.deploy_environment(environment)

        assert result.succeeded
        assert call_log.services("external_pre_deploy") == {"db"}
        assert call_log.services("external_bind") == {"db"}
        assert call_log.services("external_ref") == {"db"}
        for phase in ("check", "pre_deploy", "bind", "deploy"):
            assert "db" not in call_log.services(phase)
        assert call_log.for_phase("bind")["web"]["dependencies"] == ["db"]
        assert call_log.for_phase("deploy")["web"]["dependencies"] == ["db"]
        assert call_log.for_phase("external_bind")["db"]["finished"] <= (
            call_log.for_phase("bind")["web"]["started"]
        )
        assert environment.get("db").state == ServiceState.EVENTS_WIRED

    @pytest.mark.asyncio
    async def test_missing_external_reference(
        self, make_deployer, account_config, orchestrator
    ) -> None:
        registry = ServiceRegistry()
        registry.register_builtin("database", make_deployer(produced=["database-ref"], external_deployed=False))
        registry.register_builtin("web", make_deployer(consumed=["database-ref"]))
        environment = build({
            "db": {"type": "database", "external": True},
            "web": {"type": "web", "dependencies": ["db"]},
        }, registry, account_config)

        result = await orchestrator.deploy_environment(environment)

        assert result.failed_phase == LifecyclePhase.DEPLOY
        assert "You must deploy it independently first" in result.errors[0]
        assert result.skipped_services == ["web"]

    @pytest.mark.asyncio
    async def test_external_consumer_wired_through_reference_lookup(
        self, fake_registry, account_config, orchestrator, call_log
    ) -> None:
        environment = build({
            "jobs": {"type": "queue", "event_consumers": [{"service_name": "web"}]},
            "web": {"type": "web", "external": True},
        }, fake_registry, account_config)

        result = await orchestrator.deploy_environment(environment)

        assert result.succeeded
        assert call_log.services("consume_events") == set()
        assert call_log.for_phase("external_consume_events")["web"]["producer"] == "jobs"
        assert call_log.for_phase("produce_events")["jobs"]["consumer"] == "web"
        assert environment.get("web").consume_events_contexts["jobs"].producer_name == "jobs"


class TestLifecycleEvents:
    @pytest.mark.asyncio
    async def test_publishes_run_events(
        self, fake_registry, account_config, orchestrator, event_publisher, web_db_document
    ) -> None:
        environment = create_environment_context(
            parse_handel_file(web_db_document), "dev", account_config, fake_registry,
        )

        await orchestrator.deploy_environment(environment)

        assert len(event_publisher.events_of_type("orchestration.started")) == 1
        assert len(event_publisher.events_of_type("orchestration.completed")) == 1
        completed = event_publisher.events_of_type("service.phase_completed")
        assert {(e["service_name"], e["phase"]) for e in completed} >= {
            ("db", "deploy"), ("web", "deploy"),
        }

    @pytest.mark.asyncio
    async def test_publishes_failure(
        self, fake_registry, account_config, orchestrator, event_publisher
    ) -> None:
        environment = build({
            "a": {"type": "web", "dependencies": ["a"]},
        }, fake_registry, account_config)

        await orchestrator.deploy_environment(environment)

        failed = event_publisher.events_of_type("orchestration.failed")
        assert failed[0]["phase"] == "validation"
