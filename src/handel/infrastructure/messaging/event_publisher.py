"""Event publisher implementations."""

from __future__ import annotations

from typing import Any

import structlog

from handel.domain.ports.services import EventPublisher


logger = structlog.get_logger(__name__)


class InMemoryEventPublisher(EventPublisher):
    """Keeps every lifecycle event of the process in publication order."""

    def __init__(self) -> None:
        self._events: list[tuple[str, dict[str, Any]]] = []

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        self._events.append((event_type, payload))
        logger.debug(
            "lifecycle_event_published",
            event_type=event_type,
            app=payload.get("app_name"),
            environment=payload.get("environment_name"),
        )

    def events_of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [payload for kind, payload in self._events if kind == event_type]
