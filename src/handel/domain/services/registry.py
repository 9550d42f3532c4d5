"""Registry mapping service types to deployer implementations."""

from __future__ import annotations

from collections.abc import Mapping

import structlog

from handel.domain.models.handelfile import DEFAULT_EXTENSION_PREFIX, ServiceType
from handel.domain.ports.deployer import ServiceDeployer


logger = structlog.get_logger(__name__)


class ServiceRegistry:
    """Deployers keyed by (extension prefix, type name).

    Populated at startup, then frozen; an orchestration run only reads it,
    so a single instance can be shared between concurrent runs. The
    default prefix is reserved for built-in deployers.
    """

    def __init__(self) -> None:
        self._deployers: dict[tuple[str, str], ServiceDeployer] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Reject any further registration."""
        self._frozen = True
        logger.info("service_registry_frozen", service_types=len(self._deployers))

    def register(self, prefix: str, type_name: str, deployer: ServiceDeployer) -> None:
        if self._frozen:
            raise DeployerRegistrationError(
                f"Cannot register '{prefix}::{type_name}': the service registry is frozen"
            )
        if not isinstance(deployer, ServiceDeployer):
            raise DeployerRegistrationError(
                f"Deployer for '{prefix}::{type_name}' must implement ServiceDeployer, "
                f"got {type(deployer).__name__}"
            )
        key = (prefix, type_name)
        if key in self._deployers:
            raise DeployerRegistrationError(
                f"A deployer is already registered for '{prefix}::{type_name}'"
            )
        self._deployers[key] = deployer
        logger.debug("deployer_registered", prefix=prefix, service_type=type_name)

    def register_builtin(self, type_name: str, deployer: ServiceDeployer) -> None:
        self.register(DEFAULT_EXTENSION_PREFIX, type_name, deployer)

    def register_extension(
        self, prefix: str, deployers: Mapping[str, ServiceDeployer]
    ) -> None:
        """Register every deployer an extension provides under its prefix."""
        if prefix == DEFAULT_EXTENSION_PREFIX:
            raise DeployerRegistrationError(
                f"The '{DEFAULT_EXTENSION_PREFIX}' prefix is reserved for built-in services"
            )
        for type_name, deployer in deployers.items():
            self.register(prefix, type_name, deployer)

    def has_service(self, prefix: str, type_name: str) -> bool:
        return (prefix, type_name) in self._deployers

    def get_service(self, prefix: str, type_name: str) -> ServiceDeployer:
        try:
            return self._deployers[(prefix, type_name)]
        except KeyError:
            raise UnsupportedServiceTypeError(
                f"Unsupported service type specified '{ServiceType(prefix=prefix, name=type_name)}'"
            ) from None

    def supports(self, service_type: ServiceType) -> bool:
        return self.has_service(service_type.prefix, service_type.name)

    def resolve(self, service_type: ServiceType | str) -> ServiceDeployer:
        """Look up the deployer for a (possibly prefixed) service type."""
        if isinstance(service_type, str):
            service_type = ServiceType.parse(service_type)
        return self.get_service(service_type.prefix, service_type.name)

    @property
    def service_types(self) -> list[ServiceType]:
        return [ServiceType(prefix=prefix, name=name) for prefix, name in self._deployers]

    def __len__(self) -> int:
        return len(self._deployers)


class DeployerRegistrationError(Exception):
    """Raised when a deployer cannot be registered."""


class UnsupportedServiceTypeError(Exception):
    """Raised when no deployer is registered for a service type."""
