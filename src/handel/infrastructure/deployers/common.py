"""Shared helpers for the stack-backed built-in deployers."""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, ClassVar

import structlog

from handel.domain.models.account import AccountConfig
from handel.domain.models.contexts import (
    BindContext,
    ConsumeEventsContext,
    DeployContext,
    PreDeployContext,
    ServiceContext,
)
from handel.domain.ports.deployer import ExternalReferenceError, ServiceDeployer
from handel.domain.ports.services import Stack, StackClient


logger = structlog.get_logger(__name__)

LOGGING_BUCKET_STACK_NAME = "HandelS3LoggingBucket"


async def deploy_stack(
    client: StackClient, stack_name: str, template: dict[str, Any], tags: dict[str, str]
) -> Stack:
    """Create the stack when it is missing, otherwise update it in place."""
    stack = await client.get_stack(stack_name)
    if stack is None:
        logger.info("creating_stack", stack=stack_name)
        return await client.create_stack(stack_name, template, tags)
    logger.info("updating_stack", stack=stack_name)
    return await client.update_stack(stack_name, template, tags)


def stack_tags(service_context: ServiceContext) -> dict[str, str]:
    """Tags applied to every stack a service owns."""
    return {
        **service_context.account_config.handel_resource_tags,
        "app": service_context.app_name,
        "env": service_context.environment_name,
        "service": service_context.service_name,
        **service_context.tags,
    }


def default_resource_name(service_context: ServiceContext) -> str:
    return (
        f"{service_context.app_name}-{service_context.environment_name}-"
        f"{service_context.service_name}"
    ).lower()


def arn(service_context: ServiceContext, service: str, resource: str) -> str:
    account = service_context.account_config
    return f"arn:aws:{service}:{account.region}:{account.account_id}:{resource}"


async def create_logging_bucket_if_not_exists(
    client: StackClient, account_config: AccountConfig
) -> str:
    """Create the account-wide access log bucket once and return its name.

    An existing stack is reused as-is, never updated.
    """
    stack = await client.get_stack(LOGGING_BUCKET_STACK_NAME)
    if stack is None:
        bucket_name = (
            f"handel-s3-bucket-logging-{account_config.region}-{account_config.account_id}"
        )
        template = {
            "Resources": {
                "LoggingBucket": {
                    "Type": "AWS::S3::Bucket",
                    "Properties": {
                        "BucketName": bucket_name,
                        "AccessControl": "LogDeliveryWrite",
                    },
                },
            },
            "Outputs": {"BucketName": bucket_name},
        }
        logger.info("creating_logging_bucket", bucket=bucket_name)
        stack = await client.create_stack(
            LOGGING_BUCKET_STACK_NAME, template, dict(account_config.handel_resource_tags),
        )
    return stack.get_output("BucketName") or ""


def log_file_prefix(service_context: ServiceContext) -> str:
    return (
        f"{service_context.app_name}/{service_context.environment_name}/"
        f"{service_context.service_name}/"
    )


class StackDeployer(ServiceDeployer):
    """Deployer whose service is a single stack named after the service.

    Pre-deploy and bind have nothing to provision for these types and
    return empty outputs, for external references as well. Subclasses
    describe the stack template and how its outputs turn into a deploy
    output.
    """

    display_name: ClassVar[str] = ""

    def __init__(self, stack_client: StackClient) -> None:
        self._stack_client = stack_client

    @abstractmethod
    def build_template(
        self,
        service_context: ServiceContext,
        dependency_deploy_contexts: dict[str, DeployContext],
    ) -> dict[str, Any]:
        """Render the stack template for the service."""

    @abstractmethod
    def deploy_context_from_stack(
        self, service_context: ServiceContext, stack: Stack
    ) -> DeployContext:
        """Turn a deployed stack into the service's deploy output."""

    async def render_template(
        self,
        service_context: ServiceContext,
        dependency_deploy_contexts: dict[str, DeployContext],
    ) -> dict[str, Any]:
        """Template to deploy; override to add resources that need lookups first."""
        return self.build_template(service_context, dependency_deploy_contexts)

    async def pre_deploy(self, service_context: ServiceContext) -> PreDeployContext:
        logger.debug("pre_deploy_not_required", service=service_context.service_name)
        return PreDeployContext(**service_context.output_identity())

    async def bind(
        self,
        service_context: ServiceContext,
        dependency_pre_deploy_contexts: dict[str, PreDeployContext],
    ) -> BindContext:
        return BindContext(
            **service_context.output_identity(),
            bound_dependencies=sorted(dependency_pre_deploy_contexts),
        )

    async def deploy(
        self,
        service_context: ServiceContext,
        pre_deploy_context: PreDeployContext,
        dependency_deploy_contexts: dict[str, DeployContext],
    ) -> DeployContext:
        template = await self.render_template(service_context, dependency_deploy_contexts)
        stack = await deploy_stack(
            self._stack_client,
            service_context.resource_name,
            template,
            stack_tags(service_context),
        )
        logger.info(
            "service_stack_deployed",
            service=service_context.service_name,
            stack=stack.name,
            status=stack.status,
        )
        return self.deploy_context_from_stack(service_context, stack)

    async def get_deploy_context_for_external_ref(
        self, service_context: ServiceContext
    ) -> DeployContext:
        stack = await self._stack_client.get_stack(service_context.resource_name)
        if stack is None:
            raise ExternalReferenceError(
                f"The {self.display_name} service '{service_context.service_name}' in "
                f"environment '{service_context.environment_name}' has not been deployed. "
                f"You must deploy it independently first"
            )
        return self.deploy_context_from_stack(service_context, stack)

    async def get_pre_deploy_context_for_external_ref(
        self, service_context: ServiceContext
    ) -> PreDeployContext:
        return PreDeployContext(**service_context.output_identity())

    async def get_bind_context_for_external_ref(
        self,
        service_context: ServiceContext,
        dependency_pre_deploy_contexts: dict[str, PreDeployContext],
    ) -> BindContext:
        return BindContext(
            **service_context.output_identity(),
            bound_dependencies=sorted(dependency_pre_deploy_contexts),
        )

    async def get_consume_events_context_for_external_ref(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        producer_service_context: ServiceContext,
        producer_deploy_context: DeployContext,
    ) -> ConsumeEventsContext:
        # Wiring stacks are owned by this run even when the consumer is not.
        return await self.consume_events(
            service_context, deploy_context, producer_service_context, producer_deploy_context,
        )
