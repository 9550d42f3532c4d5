"""DynamoDB table deployer."""

from __future__ import annotations

from typing import Any, ClassVar

from handel.domain.models.contexts import (
    ConsumeEventsContext,
    DeployContext,
    DeployOutputType,
    ProduceEventsContext,
    ServiceContext,
)
from handel.domain.ports.deployer import NotSupportedError
from handel.domain.ports.services import Stack
from handel.infrastructure.deployers.common import arn, default_resource_name, StackDeployer


KEY_TYPES = {"String": "S", "Number": "N"}


class DynamoDBDeployer(StackDeployer):
    """Deploys a table keyed by the declared partition (and sort) key."""

    display_name: ClassVar[str] = "DynamoDB"
    produced_deploy_output_types: ClassVar[tuple[str, ...]] = (
        DeployOutputType.ENVIRONMENT_VARIABLES.value,
        DeployOutputType.POLICIES.value,
    )

    def check(self, service_context: ServiceContext) -> list[str]:
        errors: list[str] = []
        params = service_context.params
        partition_key = params.get("partition_key")
        if not isinstance(partition_key, dict):
            errors.append("The 'partition_key' section is required")
        else:
            errors.extend(_check_key("partition_key", partition_key))

        sort_key = params.get("sort_key")
        if sort_key is not None:
            if not isinstance(sort_key, dict):
                errors.append("The 'sort_key' section must be a mapping")
            else:
                errors.extend(_check_key("sort_key", sort_key))
        return errors

    def build_template(
        self,
        service_context: ServiceContext,
        dependency_deploy_contexts: dict[str, DeployContext],
    ) -> dict[str, Any]:
        params = service_context.params
        table_name = params.get("table_name") or default_resource_name(service_context)
        keys = [("HASH", params["partition_key"])]
        if params.get("sort_key"):
            keys.append(("RANGE", params["sort_key"]))
        return {
            "Resources": {
                "Table": {
                    "Type": "AWS::DynamoDB::Table",
                    "Properties": {
                        "TableName": table_name,
                        "AttributeDefinitions": [
                            {"AttributeName": key["name"], "AttributeType": KEY_TYPES[key["type"]]}
                            for _, key in keys
                        ],
                        "KeySchema": [
                            {"AttributeName": key["name"], "KeyType": key_type}
                            for key_type, key in keys
                        ],
                        "BillingMode": "PAY_PER_REQUEST",
                    },
                },
            },
            "Outputs": {
                "TableName": table_name,
                "TableArn": arn(service_context, "dynamodb", f"table/{table_name}"),
            },
        }

    def deploy_context_from_stack(
        self, service_context: ServiceContext, stack: Stack
    ) -> DeployContext:
        table_name = stack.get_output("TableName") or ""
        table_arn = stack.get_output("TableArn") or ""
        return DeployContext(
            **service_context.output_identity(),
            output_types=list(self.produced_deploy_output_types),
            outputs={"table_name": table_name, "table_arn": table_arn},
            environment_variables={
                service_context.env_var_name("TABLE_NAME"): table_name,
                service_context.env_var_name("TABLE_ARN"): table_arn,
            },
            policies=[
                {
                    "Effect": "Allow",
                    "Action": [
                        "dynamodb:GetItem",
                        "dynamodb:PutItem",
                        "dynamodb:UpdateItem",
                        "dynamodb:DeleteItem",
                        "dynamodb:Query",
                        "dynamodb:Scan",
                    ],
                    "Resource": [table_arn, f"{table_arn}/index/*"],
                },
            ],
            event_outputs={"resource_arn": table_arn},
        )

    async def consume_events(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        producer_service_context: ServiceContext,
        producer_deploy_context: DeployContext,
    ) -> ConsumeEventsContext:
        raise NotSupportedError("The DynamoDB service doesn't consume events from other services")

    async def produce_events(
        self,
        service_context: ServiceContext,
        deploy_context: DeployContext,
        consumer_service_context: ServiceContext,
        consumer_deploy_context: DeployContext,
    ) -> ProduceEventsContext:
        raise NotSupportedError("The DynamoDB service doesn't currently produce events for other services")


def _check_key(section: str, key: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not key.get("name"):
        errors.append(f"The 'name' field in the '{section}' section is required")
    key_type = key.get("type")
    if not key_type:
        errors.append(f"The 'type' field in the '{section}' section is required")
    elif key_type not in KEY_TYPES:
        errors.append(
            f"The 'type' field in the '{section}' section must be one of {sorted(KEY_TYPES)}"
        )
    return errors
