"""Unit tests for the simulated control plane."""

from __future__ import annotations

import pytest

from handel.domain.ports.services import Stack
from handel.infrastructure.cloud.stack_client import (
    InMemoryStackClient,
    StackAlreadyExistsError,
    StackNotFoundError,
)
from handel.infrastructure.deployers.common import deploy_stack


TEMPLATE = {"Resources": {}, "Outputs": {"BucketName": "assets"}}


class TestInMemoryStackClient:
    @pytest.mark.asyncio
    async def test_create_and_get(self, stack_client: InMemoryStackClient) -> None:
        created = await stack_client.create_stack("s1", TEMPLATE, {"app": "shop"})
        assert created.status == "CREATE_COMPLETE"
        assert created.get_output("BucketName") == "assets"
        assert await stack_client.get_stack("s1") == created

    @pytest.mark.asyncio
    async def test_missing_stack(self, stack_client: InMemoryStackClient) -> None:
        assert await stack_client.get_stack("nope") is None

    @pytest.mark.asyncio
    async def test_create_twice(self, stack_client: InMemoryStackClient) -> None:
        await stack_client.create_stack("s1", TEMPLATE, {})
        with pytest.raises(StackAlreadyExistsError):
            await stack_client.create_stack("s1", TEMPLATE, {})

    @pytest.mark.asyncio
    async def test_update_missing(self, stack_client: InMemoryStackClient) -> None:
        with pytest.raises(StackNotFoundError):
            await stack_client.update_stack("s1", TEMPLATE, {})

    @pytest.mark.asyncio
    async def test_update_without_changes(self, stack_client: InMemoryStackClient) -> None:
        created = await stack_client.create_stack("s1", TEMPLATE, {})
        updated = await stack_client.update_stack("s1", TEMPLATE, {})
        assert updated is created

    @pytest.mark.asyncio
    async def test_update_with_changes(self, stack_client: InMemoryStackClient) -> None:
        await stack_client.create_stack("s1", TEMPLATE, {})
        updated = await stack_client.update_stack("s1", {"Outputs": {"BucketName": "other"}}, {})
        assert updated.status == "UPDATE_COMPLETE"
        assert updated.get_output("BucketName") == "other"

    def test_put_stack(self, stack_client: InMemoryStackClient) -> None:
        stack_client.put_stack(Stack(name="seeded"))
        assert "seeded" in stack_client.stacks


class TestDeployStack:
    @pytest.mark.asyncio
    async def test_creates_then_updates(self, stack_client: InMemoryStackClient) -> None:
        await deploy_stack(stack_client, "s1", TEMPLATE, {})
        await deploy_stack(stack_client, "s1", TEMPLATE, {})
        assert stack_client.create_calls == 1
        assert stack_client.update_calls == 1
