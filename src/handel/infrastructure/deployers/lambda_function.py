"""Lambda function deployer."""

from __future__ import annotations

from typing import Any, ClassVar

import structlog

from handel.domain.models.contexts import (
    ConsumeEventsContext,
    DeployContext,
    DeployOutputType,
    ProduceEventsContext,
    ServiceContext,
)
from handel.domain.ports.deployer import NotSupportedError, ProvisioningError
from handel.domain.ports.services import Stack
from handel.infrastructure.deployers.common import (
    arn,
    default_resource_name,
    deploy_stack,
    StackDeployer,
    stack_tags,
)


logger = structlog.get_logger(__name__)

MIN_MEMORY_MB = 128
MAX_MEMORY_MB = 10240


class LambdaDeployer(StackDeployer):
    """Deploys a function wired to its dependencies' variables and policies."""

    display_name: ClassVar[str] = "Lambda"
    consumed_deploy_output_types: ClassVar[tuple[str, ...]] = (
        DeployOutputType.ENVIRONMENT_VARIABLES.value,
        DeployOutputType.POLICIES.value,
    )

    def check(self, service_context: ServiceContext) -> list[str]:
        errors: list[str] = []
        params = service_context.params
        for required in ("handler", "runtime"):
            if not params.get(required):
                errors.append(f"The '{required}' parameter is required")

        memory = params.get("memory")
        if memory is not None and (
            not isinstance(memory, int) or not MIN_MEMORY_MB <= memory <= MAX_MEMORY_MB
        ):
            errors.append(
                f"The 'memory' parameter must be an integer between {MIN_MEMORY_MB} and {MAX_MEMORY_MB}"
            )

        environment_variables = params.get("environment_variables", {})
        if not isinstance(environment_variables, dict):
            errors.append("The 'environment_variables' parameter must be a mapping")
        return errors

    def build_template(
        self,
        service_context: ServiceContext,
        dependency_deploy_contexts: dict[str, DeployContext],
    ) -> dict[str, Any]:
        params = service_context.params
        function_name = default_resource_name(service_context)

        variables: dict[str, str] = {}
        policies: list[dict[str, Any]] = []
        for name in sorted(dependency_deploy_contexts):
            dependency = dependency_deploy_contexts[name]
            variables.update(dependency.environment_variables)
            policies.extend(dependency.policies)
        variables.update({
            str(key): str(value)
            for key, value in params.get("environment_variables", {}).items()
        })

        return {
            "Resources": {
                "Function": {
                    "Type": "AWS::Lambda::Function",
                    "Properties": {
                        "FunctionName": function_name,
                        "Handler": params["handler"],
                        "Runtime": params["runtime"],
                        "MemorySize": params.get("memory", MIN_MEMORY_MB),
                        "Timeout": params.get("timeout", 3),
                        "Environment": {"Variables": variables},
                    },
                },
                "Role": {
                    "Type": "AWS::IAM::Role",
                    "Properties": {"Policies": policies},
                },
            },
            "Outputs": {
                "FunctionName": function_name,
                "FunctionArn": arn(service_context, "lambda", f"function:{function_name}"),
            },
        }

    def deploy_context_from_stack(
        self, service_context: ServiceContext, stack: Stack
    ) -> DeployContext:
        function_name = stack.get_output("FunctionName") or ""
        function_arn = stack.get_output("FunctionArn") or ""
        return DeployContext(
            **service_context.output_identity(),
            outputs={"function_name": function_name, "function_arn": function_arn},
            event_outputs={
                "resource_arn": function_arn,
                "resource_principal": "lambda.amazonaws.com",
            },
        )

    async def consume_events(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        producer_service_context: ServiceContext,
        producer_deploy_context: DeployContext,
    ) -> ConsumeEventsContext:
        source_arn = producer_deploy_context.event_outputs.get("resource_arn")
        principal = producer_deploy_context.event_outputs.get("resource_principal")
        if not source_arn or not principal:
            raise ProvisioningError(
                f"Service '{producer_service_context.service_name}' exposes no event source"
            )

        stack_name = f"{service_context.resource_name}-{producer_service_context.service_name}-permission"
        template = {
            "Resources": {
                "Permission": {
                    "Type": "AWS::Lambda::Permission",
                    "Properties": {
                        "Action": "lambda:InvokeFunction",
                        "FunctionName": deploy_context.outputs.get("function_name", ""),
                        "Principal": principal,
                        "SourceArn": source_arn,
                    },
                },
            },
            "Outputs": {"SourceArn": source_arn},
        }
        await deploy_stack(
            self._stack_client, stack_name, template, stack_tags(service_context),
        )
        logger.info(
            "lambda_event_permission_deployed",
            service=service_context.service_name,
            producer=producer_service_context.service_name,
        )
        return ConsumeEventsContext(
            **service_context.output_identity(),
            producer_name=producer_service_context.service_name,
            outputs={"source_arn": source_arn, "principal": principal},
        )

    async def produce_events(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        consumer_service_context: ServiceContext,
        consumer_deploy_context: DeployContext,
    ) -> ProduceEventsContext:
        raise NotSupportedError("The Lambda service doesn't produce events for other services")
