"""Affiliation notifications published to Redis pub/sub.

Delivery (email, push, in-app) is handled by whoever subscribes to the
``agency:{id}`` and ``broker:{id}`` channels. Publishing is fire-and-forget:
a failure is logged and never reaches the request that caused the event.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional
from uuid import UUID

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    INVITE_CREATED = "invite_created"
    INVITE_ACCEPTED = "invite_accepted"
    JOIN_REQUEST_CREATED = "join_request_created"
    JOIN_REQUEST_APPROVED = "join_request_approved"
    JOIN_REQUEST_REJECTED = "join_request_rejected"
    JOIN_REQUEST_AUTO_APPROVED = "join_request_auto_approved"
    JOIN_REQUEST_WITHDRAWN = "join_request_withdrawn"
    OFFER_CREATED = "offer_created"
    OFFER_ACCEPTED = "offer_accepted"
    OFFER_DECLINED = "offer_declined"
    OFFER_AUTO_ACCEPTED = "offer_auto_accepted"
    OFFER_WITHDRAWN = "offer_withdrawn"
    BROKER_REMOVED = "broker_removed"


@dataclass(frozen=True)
class AffiliationEvent:
    event_type: EventType
    agency_id: UUID
    broker_id: Optional[UUID] = None
    proposal_id: Optional[UUID] = None
    payload: dict[str, Any] = field(default_factory=dict)

    def channels(self) -> list[str]:
        channels = [f"agency:{self.agency_id}"]
        if self.broker_id is not None:
            channels.append(f"broker:{self.broker_id}")
        return channels

    def to_message(self) -> str:
        return json.dumps(
            {
                "type": "affiliation",
                "event": self.event_type.value,
                "agency_id": str(self.agency_id),
                "broker_id": str(self.broker_id) if self.broker_id else None,
                "proposal_id": str(self.proposal_id) if self.proposal_id else None,
                "payload": self.payload,
            },
            default=_json_default,
        )


def _json_default(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class AffiliationNotifier:
    """Publishes affiliation events on Redis channels."""

    def __init__(self):
        self._redis = None

    async def connect(self, redis_url: str) -> None:
        import redis.asyncio as aioredis

        self._redis = aioredis.from_url(redis_url)
        logger.info("[Notify] Connected to Redis for affiliation events")

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    async def publish(self, events: Iterable[AffiliationEvent]) -> int:
        """Publish each event to its channels; returns the number of messages sent."""
        if self._redis is None:
            return 0

        sent = 0
        for event in events:
            message = event.to_message()
            for channel in event.channels():
                try:
                    await self._redis.publish(channel, message)
                    sent += 1
                except Exception as exc:
                    logger.warning(
                        "[Notify] Failed to publish %s to %s: %s",
                        event.event_type.value,
                        channel,
                        exc,
                    )
        return sent


# Global notifier instance
_notifier: Optional[AffiliationNotifier] = None


async def init_notifier(redis_url: str) -> AffiliationNotifier:
    global _notifier
    if _notifier is None:
        _notifier = AffiliationNotifier()
        await _notifier.connect(redis_url)
    return _notifier


def get_notifier() -> Optional[AffiliationNotifier]:
    return _notifier


async def close_notifier() -> None:
    global _notifier
    if _notifier is not None:
        await _notifier.close()
        _notifier = None


async def publish_events(events: list[AffiliationEvent]) -> None:
    """Background-task entry point used by the routes after commit."""
    if not events:
        return
    notifier = get_notifier()
    if notifier is None:
        logger.debug("[Notify] Notifier not initialized, dropping %d event(s)", len(events))
        return
    await notifier.publish(events)
