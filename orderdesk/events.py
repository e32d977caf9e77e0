from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from orderdesk.context import get_correlation_id
from orderdesk.core.events import event_bus

published_events: list[dict[str, Any]] = []


def envelope(event_type: str, **payload: Any) -> dict[str, Any]:
    return {
        "event_type": event_type,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }


def publish(envelope: dict[str, Any]) -> None:
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()

    published_events.append(envelope)
    event_type = envelope.get("event_type")
    if isinstance(event_type, str) and event_type:
        event_bus.publish(event_type, envelope)


def publish_all(envelopes: list[dict[str, Any]]) -> None:
    """Publish envelopes collected during a unit of work, after it committed."""
    for item in envelopes:
        publish(item)
