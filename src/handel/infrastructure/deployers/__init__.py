"""Built-in service deployers and the default registry."""

from __future__ import annotations

from collections.abc import Mapping

from handel.domain.ports.deployer import ServiceDeployer
from handel.domain.ports.services import StackClient
from handel.domain.services.registry import ServiceRegistry
from handel.infrastructure.deployers.dynamodb import DynamoDBDeployer
from handel.infrastructure.deployers.lambda_function import LambdaDeployer
from handel.infrastructure.deployers.s3 import S3Deployer
from handel.infrastructure.deployers.sns import SNSDeployer


def create_default_registry(
    stack_client: StackClient,
    extensions: Mapping[str, Mapping[str, ServiceDeployer]] | None = None,
    freeze: bool = True,
) -> ServiceRegistry:
    """Build a registry holding the built-in deployers plus any extensions."""
    registry = ServiceRegistry()
    registry.register_builtin("dynamodb", DynamoDBDeployer(stack_client))
    registry.register_builtin("lambda", LambdaDeployer(stack_client))
    registry.register_builtin("s3", S3Deployer(stack_client))
    registry.register_builtin("sns", SNSDeployer(stack_client))

    for prefix, deployers in (extensions or {}).items():
        registry.register_extension(prefix, deployers)

    if freeze:
        registry.freeze()
    return registry


__all__ = [
    "DynamoDBDeployer",
    "LambdaDeployer",
    "S3Deployer",
    "SNSDeployer",
    "create_default_registry",
]
