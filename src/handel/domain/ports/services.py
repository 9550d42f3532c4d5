"""Service port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import Field

from handel.domain.models.base import ValueObject


class Stack(ValueObject):
    """A provisioned stack as reported by the control plane."""

    name: str
    template: dict[str, Any] = Field(default_factory=dict)
    outputs: dict[str, str] = Field(default_factory=dict)
    tags: dict[str, str] = Field(default_factory=dict)
    status: str = "CREATE_COMPLETE"

    def get_output(self, key: str) -> str | None:
        return self.outputs.get(key)


class StackClient(ABC):
    """Port for the stack-oriented cloud control plane used by deployers."""

    @abstractmethod
    async def get_stack(self, stack_name: str) -> Stack | None:
        """Describe a stack, or return None when it does not exist."""

    @abstractmethod
    async def create_stack(
        self, stack_name: str, template: dict[str, Any], tags: dict[str, str]
    ) -> Stack:
        """Create a stack and wait for completion."""

    @abstractmethod
    async def update_stack(
        self, stack_name: str, template: dict[str, Any], tags: dict[str, str]
    ) -> Stack:
        """Update a stack; an unchanged template leaves it untouched."""


class EventPublisher(ABC):
    """Port for publishing domain events."""

    @abstractmethod
    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        """Publish an event."""
