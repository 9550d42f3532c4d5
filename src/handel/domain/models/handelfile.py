"""Declarative document (Handel file) schema."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, StringConstraints


NAME_PATTERN = r"^[a-zA-Z0-9-]+$"
DEFAULT_EXTENSION_PREFIX = "handel"
EXTENSION_SEPARATOR = "::"

ResourceName = Annotated[str, StringConstraints(pattern=NAME_PATTERN)]


class EventConsumerDefinition(BaseModel):
    """A service that receives events produced by the declaring service."""

    service_name: ResourceName

    model_config = {"extra": "forbid"}


class ServiceDefinition(BaseModel):
    """One service entry in an environment.

    Everything besides the keys modelled here is the service's parameter
    payload; it is kept as-is and validated only by the owning deployer.
    """

    type: Annotated[str, StringConstraints(min_length=1)]
    dependencies: list[str] = Field(default_factory=list)
    event_consumers: list[EventConsumerDefinition] = Field(default_factory=list)
    tags: dict[str, str] = Field(default_factory=dict)
    external: bool = False

    model_config = {"extra": "allow"}

    @property
    def params(self) -> dict[str, Any]:
        """Full service definition as handed to the deployer."""
        return self.model_dump(mode="json")

    @property
    def service_type(self) -> ServiceType:
        return ServiceType.parse(self.type)


EnvironmentDefinition = dict[ResourceName, ServiceDefinition]


class HandelFile(BaseModel):
    """Top-level declaration of an application across environments."""

    version: Literal[1] = 1
    name: ResourceName
    tags: dict[str, str] = Field(default_factory=dict)
    environments: dict[ResourceName, EnvironmentDefinition]

    model_config = {"extra": "forbid"}


class ServiceType(BaseModel):
    """Service type reference, optionally qualified by an extension namespace."""

    prefix: str = DEFAULT_EXTENSION_PREFIX
    name: str

    model_config = {"frozen": True}

    @classmethod
    def parse(cls, value: str) -> ServiceType:
        """Parse ``"<prefix>::<name>"`` or a bare built-in ``"<name>"``."""
        if EXTENSION_SEPARATOR in value:
            prefix, _, name = value.partition(EXTENSION_SEPARATOR)
            return cls(prefix=prefix, name=name)
        return cls(name=value)

    def __str__(self) -> str:
        if self.prefix == DEFAULT_EXTENSION_PREFIX:
            return self.name
        return f"{self.prefix}{EXTENSION_SEPARATOR}{self.name}"
