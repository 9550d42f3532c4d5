"""S3 bucket deployer."""

from __future__ import annotations

import asyncio
from typing import Any, ClassVar

from handel.domain.models.contexts import (
    ConsumeEventsContext,
    DeployContext,
    DeployOutputType,
    ProduceEventsContext,
    ServiceContext,
)
from handel.domain.ports.deployer import NotSupportedError
from handel.domain.ports.services import Stack, StackClient
from handel.infrastructure.deployers.common import (
    create_logging_bucket_if_not_exists,
    default_resource_name,
    log_file_prefix,
    StackDeployer,
)


VERSIONING_VALUES = ("enabled", "disabled")


class S3Deployer(StackDeployer):
    """Deploys a bucket and exposes its name and location to dependents."""

    display_name: ClassVar[str] = "S3"
    produced_deploy_output_types: ClassVar[tuple[str, ...]] = (
        DeployOutputType.ENVIRONMENT_VARIABLES.value,
        DeployOutputType.POLICIES.value,
    )

    def __init__(self, stack_client: StackClient) -> None:
        super().__init__(stack_client)
        # Serializes creation of the shared access log bucket.
        self._logging_bucket_lock = asyncio.Lock()

    def check(self, service_context: ServiceContext) -> list[str]:
        errors: list[str] = []
        versioning = service_context.params.get("versioning")
        if versioning is not None and versioning not in VERSIONING_VALUES:
            errors.append("'versioning' parameter must be either 'enabled' or 'disabled'")
        bucket_name = service_context.params.get("bucket_name")
        if bucket_name is not None and not isinstance(bucket_name, str):
            errors.append("'bucket_name' parameter must be a string")
        return errors

    async def render_template(
        self,
        service_context: ServiceContext,
        dependency_deploy_contexts: dict[str, DeployContext],
    ) -> dict[str, Any]:
        async with self._logging_bucket_lock:
            logging_bucket = await create_logging_bucket_if_not_exists(
                self._stack_client, service_context.account_config,
            )
        template = self.build_template(service_context, dependency_deploy_contexts)
        template["Resources"]["Bucket"]["Properties"]["LoggingConfiguration"] = {
            "DestinationBucketName": logging_bucket,
            "LogFilePrefix": log_file_prefix(service_context),
        }
        return template

    def build_template(
        self,
        service_context: ServiceContext,
        dependency_deploy_contexts: dict[str, DeployContext],
    ) -> dict[str, Any]:
        params = service_context.params
        bucket_name = params.get("bucket_name") or default_resource_name(service_context)
        versioning = params.get("versioning", "disabled")
        return {
            "Resources": {
                "Bucket": {
                    "Type": "AWS::S3::Bucket",
                    "Properties": {
                        "BucketName": bucket_name,
                        "VersioningConfiguration": {
                            "Status": "Enabled" if versioning == "enabled" else "Suspended",
                        },
                    },
                },
            },
            "Outputs": {"BucketName": bucket_name},
        }

    def deploy_context_from_stack(
        self, service_context: ServiceContext, stack: Stack
    ) -> DeployContext:
        bucket_name = stack.get_output("BucketName") or ""
        region = service_context.account_config.region
        return DeployContext(
            **service_context.output_identity(),
            output_types=list(self.produced_deploy_output_types),
            outputs={"bucket_name": bucket_name},
            environment_variables={
                service_context.env_var_name("BUCKET_NAME"): bucket_name,
                service_context.env_var_name("BUCKET_URL"): f"https://{bucket_name}.s3.amazonaws.com/",
                service_context.env_var_name("REGION_ENDPOINT"): f"s3-{region}.amazonaws.com",
            },
            policies=[
                {
                    "Effect": "Allow",
                    "Action": ["s3:ListBucket"],
                    "Resource": [f"arn:aws:s3:::{bucket_name}"],
                },
                {
                    "Effect": "Allow",
                    "Action": ["s3:PutObject", "s3:GetObject", "s3:DeleteObject"],
                    "Resource": [f"arn:aws:s3:::{bucket_name}/*"],
                },
            ],
            event_outputs={"resource_arn": f"arn:aws:s3:::{bucket_name}"},
        )

    async def consume_events(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        producer_service_context: ServiceContext,
        producer_deploy_context: DeployContext,
    ) -> ConsumeEventsContext:
        raise NotSupportedError("The S3 service doesn't consume events from other services")

    async def produce_events(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        consumer_service_context: ServiceContext,
        consumer_deploy_context: DeployContext,
    ) -> ProduceEventsContext:
        raise NotSupportedError("The S3 service doesn't currently produce events for other services")
