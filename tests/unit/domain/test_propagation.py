"""Unit tests for context propagation between services."""

from __future__ import annotations

import pytest

from handel.domain.models.contexts import DeployContext, PreDeployContext, ServiceState
from handel.domain.services.environment_builder import create_environment_context
from handel.domain.services.propagation import (
    dependency_deploy_contexts,
    dependency_pre_deploy_contexts,
    EnvironmentVariableCollisionError,
    merge_deploy_contexts,
    MissingDependencyOutputError,
    scope_deploy_context,
)
from handel.domain.services.schema_validator import parse_handel_file


@pytest.fixture
def environment(fake_registry, account_config, make_deployer):
    fake_registry.register_builtin(
        "app", make_deployer(produced=["environmentVariables"], consumed=["environmentVariables"]),
    )
    handel_file = parse_handel_file({
        "version": 1,
        "name": "shop",
        "environments": {
            "dev": {
                "web": {"type": "web", "dependencies": ["db"]},
                "db": {"type": "database"},
                "api": {"type": "app"},
                "worker": {"type": "app", "dependencies": ["api"]},
            },
        },
    })
    return create_environment_context(handel_file, "dev", account_config, fake_registry)


def _deploy(ctx, **fields) -> DeployContext:
    context = DeployContext(**ctx.output_identity(), **fields)
    ctx.state = ServiceState.BOUND
    ctx.record_deploy(context)
    return context


class TestDependencyContexts:
    def test_pre_deploy_contexts(self, environment) -> None:
        db = environment.get("db")
        db.pre_deploy_context = PreDeployContext(**db.output_identity(), security_groups=["sg-1"])
        contexts = dependency_pre_deploy_contexts(environment.get("web"))
        assert list(contexts) == ["db"]
        assert contexts["db"].security_groups == ["sg-1"]

    def test_pre_deploy_contexts_require_pre_deployed_dependencies(self, environment) -> None:
        with pytest.raises(MissingDependencyOutputError, match="has no pre-deploy output"):
            dependency_pre_deploy_contexts(environment.get("web"))

    def test_deploy_contexts_require_deployed_dependencies(self, environment) -> None:
        with pytest.raises(MissingDependencyOutputError):
            dependency_deploy_contexts(environment.get("web"))

    def test_deploy_contexts_scoped_to_consumer(self, environment) -> None:
        db = environment.get("db")
        _deploy(
            db,
            output_types=["database-ref"],
            environment_variables={"DB_URL": "db.example.com"},
            policies=[{"Effect": "Allow"}],
        )
        contexts = dependency_deploy_contexts(environment.get("web"))
        assert contexts["db"].output_types == ["database-ref"]
        assert contexts["db"].environment_variables == {}
        assert contexts["db"].policies == []
        # the dependency's own record is untouched
        assert db.deploy_context.environment_variables == {"DB_URL": "db.example.com"}

    def test_scope_keeps_consumed_environment_variables(self, environment) -> None:
        api = environment.get("api")
        context = DeployContext(
            **api.output_identity(),
            output_types=["environmentVariables", "policies"],
            environment_variables={"API_URL": "api"},
            policies=[{"Effect": "Allow"}],
        )
        scoped = scope_deploy_context(context, environment.get("worker"))
        assert scoped.output_types == ["environmentVariables"]
        assert scoped.environment_variables == {"API_URL": "api"}
        assert scoped.policies == []


class TestMergeDeployContexts:
    def test_union_of_deployed_services(self, environment) -> None:
        _deploy(environment.get("db"), environment_variables={"DB_URL": "db"},
                policies=[{"Effect": "Allow", "Resource": "db"}])
        _deploy(environment.get("api"), environment_variables={"API_URL": "api"},
                policies=[{"Effect": "Allow", "Resource": "db"}])
        summary = merge_deploy_contexts(environment.services)
        assert summary.environment_variables == {"DB_URL": "db", "API_URL": "api"}
        assert summary.policies == [{"Effect": "Allow", "Resource": "db"}]

    def test_failed_services_left_out(self, environment) -> None:
        db = environment.get("db")
        _deploy(db, environment_variables={"DB_URL": "db"})
        db.state = ServiceState.FAILED
        assert merge_deploy_contexts(environment.services).environment_variables == {}

    def test_collision_is_an_error(self, environment) -> None:
        _deploy(environment.get("db"), environment_variables={"SHARED": "a"})
        _deploy(environment.get("api"), environment_variables={"SHARED": "b"})
        with pytest.raises(EnvironmentVariableCollisionError, match="SHARED"):
            merge_deploy_contexts(environment.services)
