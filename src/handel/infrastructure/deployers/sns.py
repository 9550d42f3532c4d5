"""SNS topic deployer."""

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


class SNSDeployer(StackDeployer):
    """Deploys a topic that can publish to subscribed functions."""

    display_name: ClassVar[str] = "SNS"
    produced_deploy_output_types: ClassVar[tuple[str, ...]] = (
        DeployOutputType.ENVIRONMENT_VARIABLES.value,
        DeployOutputType.POLICIES.value,
    )
    produced_events_supported_services: ClassVar[tuple[str, ...]] = ("lambda",)

    def check(self, service_context: ServiceContext) -> list[str]:
        errors: list[str] = []
        subscriptions = service_context.params.get("subscriptions", [])
        if not isinstance(subscriptions, list):
            return ["The 'subscriptions' parameter must be a list"]
        for subscription in subscriptions:
            if not isinstance(subscription, dict) or not subscription.get("endpoint"):
                errors.append("Each subscription requires an 'endpoint' field")
            elif not subscription.get("protocol"):
                errors.append("Each subscription requires a 'protocol' field")
        return errors

    def build_template(
        self,
        service_context: ServiceContext,
        dependency_deploy_contexts: dict[str, DeployContext],
    ) -> dict[str, Any]:
        topic_name = default_resource_name(service_context)
        return {
            "Resources": {
                "Topic": {
                    "Type": "AWS::SNS::Topic",
                    "Properties": {
                        "TopicName": topic_name,
                        "Subscription": [
                            {"Endpoint": sub["endpoint"], "Protocol": sub["protocol"]}
                            for sub in service_context.params.get("subscriptions", [])
                        ],
                    },
                },
            },
            "Outputs": {
                "TopicName": topic_name,
                "TopicArn": arn(service_context, "sns", topic_name),
            },
        }

    def deploy_context_from_stack(
        self, service_context: ServiceContext, stack: Stack
    ) -> DeployContext:
        topic_name = stack.get_output("TopicName") or ""
        topic_arn = stack.get_output("TopicArn") or ""
        return DeployContext(
            **service_context.output_identity(),
            output_types=list(self.produced_deploy_output_types),
            outputs={"topic_name": topic_name, "topic_arn": topic_arn},
            environment_variables={
                service_context.env_var_name("TOPIC_ARN"): topic_arn,
                service_context.env_var_name("TOPIC_NAME"): topic_name,
            },
            policies=[
                {
                    "Effect": "Allow",
                    "Action": ["sns:Publish", "sns:GetTopicAttributes"],
                    "Resource": [topic_arn],
                },
            ],
            event_outputs={"resource_arn": topic_arn, "resource_principal": "sns.amazonaws.com"},
        )

    async def consume_events(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        producer_service_context: ServiceContext,
        producer_deploy_context: DeployContext,
    ) -> ConsumeEventsContext:
        raise NotSupportedError("The SNS service doesn't consume events from other services")

    async def produce_events(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        consumer_service_context: ServiceContext,
        consumer_deploy_context: DeployContext,
    ) -> ProduceEventsContext:
        consumer_type = consumer_service_context.service_type.name
        if consumer_type not in self.produced_events_supported_services:
            raise NotSupportedError(
                f"The SNS service doesn't produce events for the '{consumer_type}' service type"
            )

        topic_arn = deploy_context.outputs.get("topic_arn", "")
        endpoint = consumer_deploy_context.event_outputs.get("resource_arn")
        if not endpoint:
            raise ProvisioningError(
                f"Service '{consumer_service_context.service_name}' exposes no event endpoint"
            )

        stack_name = f"{service_context.resource_name}-{consumer_service_context.service_name}-subscription"
        template = {
            "Resources": {
                "Subscription": {
                    "Type": "AWS::SNS::Subscription",
                    "Properties": {"TopicArn": topic_arn, "Endpoint": endpoint, "Protocol": "lambda"},
                },
            },
            "Outputs": {"SubscriptionEndpoint": endpoint},
        }
        await deploy_stack(
            self._stack_client, stack_name, template, stack_tags(service_context),
        )
        logger.info(
            "sns_subscription_deployed",
            service=service_context.service_name,
            consumer=consumer_service_context.service_name,
        )
        return ProduceEventsContext(
            **service_context.output_identity(),
            consumer_name=consumer_service_context.service_name,
            outputs={"topic_arn": topic_arn, "endpoint": endpoint},
        )
