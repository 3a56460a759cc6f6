"""
Fan-out hub delivering newly ingested records to live dashboard sessions.

Sessions subscribe to one service room at a time. Delivery is at-most-once and
non-durable: a session that is not subscribed when a record is published never
sees it, and a session whose queue is full loses the event.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from routewatch.lib.metrics import record_fanout, update_active_sessions

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Subscriber:
    """One dashboard session.

    Attributes:
        id: Session identifier
        queue: Pending events for this session
        service: Room the session is in, None while unsubscribed
        closed: Set once the session disconnects
    """

    id: str
    queue: asyncio.Queue
    service: str | None = None
    closed: bool = False
    dropped: int = field(default=0)


class FanoutHub:
    """Rooms of subscribers keyed by service name."""

    def __init__(self, queue_size: int = 256):
        self.queue_size = queue_size
        self._rooms: dict[str, set[Subscriber]] = {}
        self._sessions: dict[str, Subscriber] = {}

    def connect(self) -> Subscriber:
        """Register a new, unsubscribed session."""
        subscriber = Subscriber(id=str(uuid.uuid4()), queue=asyncio.Queue(maxsize=self.queue_size))
        self._sessions[subscriber.id] = subscriber
        update_active_sessions(len(self._sessions))
        return subscriber

    def join(self, subscriber: Subscriber, service: str) -> None:
        """Subscribe a session to a service room.

        A session already in another room leaves it first.

        Raises:
            ValueError: If the session is disconnected or the service is blank
        """
        if subscriber.closed:
            raise ValueError('session is disconnected')
        if not service:
            raise ValueError('service name is required')

        if subscriber.service == service:
            return
        if subscriber.service is not None:
            self._remove(subscriber)

        self._rooms.setdefault(service, set()).add(subscriber)
        subscriber.service = service
        logger.debug(f'Session {subscriber.id} joined room {service}')

    def leave(self, subscriber: Subscriber, service: str | None = None) -> bool:
        """Unsubscribe a session.

        Args:
            subscriber: Session to unsubscribe
            service: Room to leave; ignored unless it is the session's room

        Returns:
            True if the session left a room
        """
        if subscriber.service is None:
            return False
        if service is not None and service != subscriber.service:
            return False
        self._remove(subscriber)
        return True

    def disconnect(self, subscriber: Subscriber) -> None:
        """Remove a session for good."""
        if subscriber.service is not None:
            self._remove(subscriber)
        subscriber.closed = True
        self._sessions.pop(subscriber.id, None)
        update_active_sessions(len(self._sessions))

    def _remove(self, subscriber: Subscriber) -> None:
        service = subscriber.service
        room = self._rooms.get(service)
        if room is not None:
            room.discard(subscriber)
            if not room:
                del self._rooms[service]
        subscriber.service = None
        logger.debug(f'Session {subscriber.id} left room {service}')

    def publish(self, service: str, record: dict[str, Any]) -> int:
        """Deliver a record to every session in the service's room.

        Returns:
            Number of sessions the record was queued for
        """
        room = self._rooms.get(service)
        if not room:
            return 0

        event = {'event': 'new_metric', 'data': record}
        delivered = 0
        dropped = 0
        for subscriber in list(room):
            try:
                subscriber.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                subscriber.dropped += 1
                dropped += 1
                logger.warning(f'Dropped live event for slow session {subscriber.id} in room {service}')

        record_fanout(delivered, dropped)
        return delivered

    def notify(self, subscriber: Subscriber, event: dict[str, Any]) -> bool:
        """Queue a control event (acknowledgement or error) for one session.

        Returns:
            False if the session is closed or its queue is full
        """
        if subscriber.closed:
            return False
        try:
            subscriber.queue.put_nowait(event)
        except asyncio.QueueFull:
            subscriber.dropped += 1
            return False
        return True

    def room_size(self, service: str) -> int:
        return len(self._rooms.get(service, ()))

    @property
    def session_count(self) -> int:
        return len(self._sessions)
