"""Unit tests for event publisher."""

from __future__ import annotations

import pytest

from handel.domain.events import OrchestrationStarted
from handel.infrastructure.messaging.event_publisher import InMemoryEventPublisher


class TestInMemoryEventPublisher:
    @pytest.mark.asyncio
    async def test_events_of_type_filters_in_publication_order(self) -> None:
        publisher = InMemoryEventPublisher()
        await publisher.publish("service.phase_completed", {"service_name": "db"})
        await publisher.publish("orchestration.started", {"app_name": "shop"})
        await publisher.publish("service.phase_completed", {"service_name": "web"})
        completed = publisher.events_of_type("service.phase_completed")
        assert [payload["service_name"] for payload in completed] == ["db", "web"]

    @pytest.mark.asyncio
    async def test_domain_event_payload_is_kept_as_published(self) -> None:
        publisher = InMemoryEventPublisher()
        event = OrchestrationStarted(app_name="shop", environment_name="dev", service_count=2)
        await publisher.publish(event.event_type, event.model_dump(mode="json"))
        [payload] = publisher.events_of_type("orchestration.started")
        assert payload["app_name"] == "shop"
        assert payload["service_count"] == 2

    @pytest.mark.asyncio
    async def test_unknown_event_type_has_no_payloads(self) -> None:
        publisher = InMemoryEventPublisher()
        await publisher.publish("orchestration.started", {})
        assert publisher.events_of_type("orchestration.failed") == []
