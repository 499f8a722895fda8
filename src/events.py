"""
Event Recording - In-memory pub/sub of reconciliation events.

The controller records what happened to each ElasticsearchCluster (synced,
failed, rejected, deleted). Subscribers, such as the operator API's event
stream, receive the events formatted as Server-Sent Events.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

from models import ElasticsearchCluster

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Severity of a cluster event."""

    NORMAL = "Normal"
    WARNING = "Warning"


class Reason:
    """Machine-readable reasons attached to cluster events."""

    SYNCED = "Synced"
    SYNC_FAILED = "SyncFailed"
    SYNC_ABANDONED = "SyncAbandoned"
    INVALID_SPEC = "InvalidSpec"
    DELETED = "Deleted"


@dataclass
class ClusterEvent:
    """Something that happened while reconciling a cluster."""

    event_type: EventType
    reason: str
    namespace: str
    name: str
    message: str
    timestamp: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["event_type"] = self.event_type.value
        return data

    def to_sse(self) -> str:
        """
        Format the event as an SSE message.

        Returns:
            SSE-formatted string with event type and JSON data lines.
        """
        json_data = json.dumps(self.to_dict())
        return f"event: {self.event_type.value}\ndata: {json_data}\n\n"

    @classmethod
    def for_cluster(
        cls,
        cluster: ElasticsearchCluster,
        event_type: EventType,
        reason: str,
        message: str,
    ) -> "ClusterEvent":
        return cls(
            event_type=event_type,
            reason=reason,
            namespace=cluster.metadata.namespace,
            name=cluster.metadata.name,
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )


class EventSubscription:
    """
    Async iterator for consuming events from a subscription.

    A ``None`` sentinel value stops iteration.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        filter_fn: Optional[Callable[[ClusterEvent], bool]] = None,
    ):
        self._queue = queue
        self._filter_fn = filter_fn

    def __aiter__(self) -> AsyncIterator[ClusterEvent]:
        return self

    async def __anext__(self) -> ClusterEvent:
        while True:
            event = await self._queue.get()

            if event is None:
                raise StopAsyncIteration

            if self._filter_fn is None or self._filter_fn(event):
                return event


class EventBus:
    """
    In-memory pub/sub event bus for cluster events.

    Maintains an ``asyncio.Queue`` per subscriber. Publishing never blocks:
    events for subscribers whose queues are full are dropped.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscribers: Dict[str, asyncio.Queue] = {}

    def publish(self, event: ClusterEvent) -> None:
        for subscriber_id, queue in list(self._subscribers.items()):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropped event for subscriber {subscriber_id}: queue full")

    def subscribe(
        self,
        filter_fn: Optional[Callable[[ClusterEvent], bool]] = None,
    ) -> Tuple[str, EventSubscription]:
        """
        Subscribe to events.

        Args:
            filter_fn: Optional predicate applied to each event.

        Returns:
            A tuple of ``(subscriber_id, EventSubscription)``.
        """
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers[subscriber_id] = queue
        logger.info(f"New event subscriber: {subscriber_id}")
        return subscriber_id, EventSubscription(queue, filter_fn)

    def unsubscribe(self, subscriber_id: str) -> None:
        """
        Remove a subscriber, ending its subscription's iteration.

        Args:
            subscriber_id: The ID returned by :meth:`subscribe`.
        """
        queue = self._subscribers.pop(subscriber_id, None)
        if queue is None:
            return
        try:
            queue.put_nowait(None)
        except asyncio.QueueFull:
            # Make room for the sentinel; the subscriber is going away
            queue.get_nowait()
            queue.put_nowait(None)
        logger.info(f"Unsubscribed: {subscriber_id}")

    def subscriber_count(self) -> int:
        return len(self._subscribers)


class EventRecorder:
    """Records events about clusters on an event bus and in the log."""

    def __init__(self, event_bus: Optional[EventBus] = None, component: str = "elasticsearchCluster"):
        self.event_bus = event_bus
        self.component = component

    def event(
        self,
        cluster: ElasticsearchCluster,
        event_type: EventType,
        reason: str,
        message: str,
    ) -> ClusterEvent:
        event = ClusterEvent.for_cluster(cluster, event_type, reason, message)
        logger.debug(
            f"Event({self.component}) {event.namespace}/{event.name}: "
            f"type={event_type.value} reason={reason} message={message}"
        )
        if self.event_bus is not None:
            self.event_bus.publish(event)
        return event

    def normal(self, cluster: ElasticsearchCluster, reason: str, message: str) -> ClusterEvent:
        return self.event(cluster, EventType.NORMAL, reason, message)

    def warning(self, cluster: ElasticsearchCluster, reason: str, message: str) -> ClusterEvent:
        return self.event(cluster, EventType.WARNING, reason, message)
