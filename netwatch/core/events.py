"""In-memory async event bus pushing device updates to subscribers."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from netwatch.core.errors import EventSinkError
from netwatch.core.models import (
    DeviceEvent,
    DeviceUpdate,
    DiscoveredDevice,
    EventType,
    MonitoredDevice,
)

logger = logging.getLogger(__name__)

SnapshotProvider = Callable[[], Awaitable[tuple[list[MonitoredDevice], list[DiscoveredDevice]]]]


class EventBus:
    """Async pub/sub event bus using per-subscriber queues.

    Implements the engine's event sink.  Subscribers receive DeviceEvent
    objects via asyncio.Queue; a new subscriber created with
    ``subscribe_with_snapshot`` first receives an ``initial_data`` event.
    """

    def __init__(self, max_queue: int = 256, max_history: int = 500) -> None:
        self._subscribers: list[asyncio.Queue[DeviceEvent]] = []
        self._history: list[DeviceEvent] = []
        self._max_queue = max_queue
        self._max_history = max_history
        self._snapshot_provider: SnapshotProvider | None = None

    def set_snapshot_provider(self, provider: SnapshotProvider) -> None:
        """Install the callable that builds the initial snapshot for new subscribers."""
        self._snapshot_provider = provider

    def subscribe(self) -> asyncio.Queue[DeviceEvent]:
        """Create a new subscription queue and return it."""
        queue: asyncio.Queue[DeviceEvent] = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.append(queue)
        logger.debug("New event subscriber (total: %d)", len(self._subscribers))
        return queue

    async def subscribe_with_snapshot(self) -> asyncio.Queue[DeviceEvent]:
        """Subscribe and seed the queue with the current device snapshot.

        The queue is registered before the snapshot is read; events published
        meanwhile stay queued behind the snapshot.
        """
        queue = self.subscribe()
        if self._snapshot_provider is None:
            return queue
        try:
            monitored, discovered = await self._snapshot_provider()
        except Exception as exc:
            logger.error("Error fetching initial data: %s", exc)
            return queue
        logger.info(
            "Sending initial data: %d monitored devices, %d discovered devices",
            len(monitored),
            len(discovered),
        )
        try:
            await self.emit_initial_snapshot(queue, monitored, discovered)
        except EventSinkError as exc:
            logger.error("%s", exc)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[DeviceEvent]) -> None:
        """Remove a subscription queue."""
        try:
            self._subscribers.remove(queue)
            logger.debug("Subscriber removed (total: %d)", len(self._subscribers))
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: DeviceEvent) -> None:
        """Publish an event to all subscribers."""
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        logger.debug("Event: %s | address=%s", event.event_type.value, event.address or "N/A")

        dead_queues: list[asyncio.Queue[DeviceEvent]] = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Drop oldest event and try again
                try:
                    queue.get_nowait()
                    queue.put_nowait(event)
                except (asyncio.QueueEmpty, asyncio.QueueFull):
                    dead_queues.append(queue)

        for q in dead_queues:
            self.unsubscribe(q)

    # Event sink -------------------------------------------------------

    async def emit_device_update(self, update: DeviceUpdate) -> None:
        await self._emit(DeviceEvent(event_type=EventType.DEVICE_UPDATE, update=update))

    async def emit_discovery(self, device: DiscoveredDevice) -> None:
        await self._emit(DeviceEvent(event_type=EventType.DISCOVERED_DEVICE, discovered=device))

    async def emit_initial_snapshot(
        self,
        queue: asyncio.Queue[DeviceEvent],
        monitored: list[MonitoredDevice],
        discovered: list[DiscoveredDevice],
    ) -> None:
        """Deliver a full snapshot to one subscriber, ahead of anything already queued."""
        event = _snapshot_event(monitored, discovered)
        try:
            pending: list[DeviceEvent] = []
            while not queue.empty():
                pending.append(queue.get_nowait())
            if queue.maxsize > 0:
                # Snapshot takes one slot; the newest queued events keep the rest
                room = queue.maxsize - 1
                pending = pending[len(pending) - room:] if room else []
            queue.put_nowait(event)
            for queued in pending:
                queue.put_nowait(queued)
        except Exception as exc:
            raise EventSinkError(f"Failed to deliver initial data: {exc}") from exc

    async def _emit(self, event: DeviceEvent) -> None:
        try:
            await self.publish(event)
        except Exception as exc:
            raise EventSinkError(f"Failed to publish {event.event_type.value}: {exc}") from exc

    @property
    def recent_events(self) -> list[DeviceEvent]:
        """Return the most recent events (newest first)."""
        return list(reversed(self._history))


def _snapshot_event(
    monitored: list[MonitoredDevice],
    discovered: list[DiscoveredDevice],
) -> DeviceEvent:
    return DeviceEvent(
        event_type=EventType.INITIAL_DATA,
        monitored=monitored,
        discovered_devices=discovered,
    )
