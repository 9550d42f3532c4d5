"""Simulated stack-oriented control plane."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from handel.domain.ports.services import Stack, StackClient


logger = structlog.get_logger(__name__)


class InMemoryStackClient(StackClient):
    """Simulated control plane for development/testing.

    Stacks live in memory; a stack's outputs are the ``Outputs`` section
    of its template. Call counts are kept so idempotence can be observed.
    """

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self._stacks: dict[str, Stack] = {}
        self._latency = latency_seconds
        self.create_calls = 0
        self.update_calls = 0
        self.describe_calls = 0

    async def get_stack(self, stack_name: str) -> Stack | None:
        self.describe_calls += 1
        await asyncio.sleep(self._latency)
        return self._stacks.get(stack_name)

    async def create_stack(
        self, stack_name: str, template: dict[str, Any], tags: dict[str, str]
    ) -> Stack:
        if stack_name in self._stacks:
            raise StackAlreadyExistsError(f"Stack {stack_name} already exists")

        self.create_calls += 1
        logger.info("stack_create", stack=stack_name)
        await asyncio.sleep(self._latency)

        stack = Stack(
            name=stack_name,
            template=template,
            outputs=_template_outputs(template),
            tags=dict(tags),
            status="CREATE_COMPLETE",
        )
        self._stacks[stack_name] = stack
        return stack

    async def update_stack(
        self, stack_name: str, template: dict[str, Any], tags: dict[str, str]
    ) -> Stack:
        existing = self._stacks.get(stack_name)
        if existing is None:
            raise StackNotFoundError(f"Stack {stack_name} does not exist")

        self.update_calls += 1
        if existing.template == template and existing.tags == tags:
            logger.info("stack_update_no_changes", stack=stack_name)
            return existing

        logger.info("stack_update", stack=stack_name)
        await asyncio.sleep(self._latency)
        stack = existing.model_copy(update={
            "template": template,
            "outputs": _template_outputs(template),
            "tags": dict(tags),
            "status": "UPDATE_COMPLETE",
        })
        self._stacks[stack_name] = stack
        return stack

    def put_stack(self, stack: Stack) -> None:
        """Seed a stack as if it had been deployed by another run."""
        self._stacks[stack.name] = stack

    @property
    def stacks(self) -> dict[str, Stack]:
        return dict(self._stacks)


def _template_outputs(template: dict[str, Any]) -> dict[str, str]:
    return {key: str(value) for key, value in template.get("Outputs", {}).items()}


class StackAlreadyExistsError(Exception):
    """Raised when creating a stack whose name is taken."""


class StackNotFoundError(Exception):
    """Raised when updating a stack that does not exist."""
