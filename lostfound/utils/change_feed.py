"""In-process feed of row changes.

Subscribers pick a table, the events they care about and an optional
column-equality filter; writers publish after their transaction commits.

Writers run on threadpool threads (sync routes) or on the event loop (async
routes). A subscription opened from a coroutine remembers its loop, and
events reach its queue through `call_soon_threadsafe`, so waiting for the
next change never occupies a worker thread.
"""
import asyncio
import json
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Set

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
EVENTS = frozenset({INSERT, UPDATE, DELETE})

MAX_PENDING_EVENTS = 1000


@dataclass
class ChangeEvent:
    table: str
    event: str
    new: Dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "table": self.table,
            "event": self.event,
            "new": self.new,
            "timestamp": self.timestamp,
        }

    def to_sse(self) -> str:
        """Format as a Server-Sent Events message."""
        lines = [
            f"id: {self.id}",
            f"event: {self.event}",
            f"data: {json.dumps(self.to_dict())}",
        ]
        return "\n".join(lines) + "\n\n"


@dataclass(eq=False)
class Subscription:
    table: str
    events: frozenset
    filter_column: Optional[str] = None
    filter_value: Optional[str] = None
    # loop of the consuming coroutine; None when consumed synchronously
    loop: Optional[asyncio.AbstractEventLoop] = None
    pending: "asyncio.Queue[ChangeEvent]" = field(
        default_factory=lambda: asyncio.Queue(maxsize=MAX_PENDING_EVENTS)
    )

    def matches(self, change: ChangeEvent) -> bool:
        if change.table != self.table or change.event not in self.events:
            return False

        if self.filter_column is None:
            return True

        return str(change.new.get(self.filter_column)) == str(self.filter_value)

    def deliver(self, change: ChangeEvent) -> None:
        if self.loop is None:
            self._enqueue(change)
            return

        try:
            self.loop.call_soon_threadsafe(self._enqueue, change)
        except RuntimeError:
            # loop already closed; the stream is gone
            logger.debug("Dropping %s event for closed %s stream", change.event, self.table)

    def _enqueue(self, change: ChangeEvent) -> None:
        try:
            self.pending.put_nowait(change)
        except asyncio.QueueFull:
            logger.warning("Change queue full for %s subscriber, dropping event", self.table)

    def get_nowait(self) -> Optional[ChangeEvent]:
        try:
            return self.pending.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def next(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Wait for the next change; None if nothing arrived within `timeout`."""
        try:
            return await asyncio.wait_for(self.pending.get(), timeout)
        except asyncio.TimeoutError:
            return None


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class ChangeFeed:
    def __init__(self):
        self._subscriptions: Set[Subscription] = set()
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    @contextmanager
    def subscribe(
        self,
        table: str,
        events=EVENTS,
        filter_column: Optional[str] = None,
        filter_value=None,
    ) -> Iterator[Subscription]:
        """Scoped subscription; released on every way out of the block."""
        events = frozenset(e.upper() for e in events)
        unknown = events - EVENTS
        if unknown:
            raise ValueError(f"Unknown change events: {sorted(unknown)}")

        subscription = Subscription(
            table=table,
            events=events,
            filter_column=filter_column,
            filter_value=None if filter_value is None else str(filter_value),
            loop=_running_loop(),
        )

        with self._lock:
            self._subscriptions.add(subscription)

        try:
            yield subscription
        finally:
            with self._lock:
                self._subscriptions.discard(subscription)

    def publish(self, table: str, event: str, row) -> ChangeEvent:
        new = row.model_dump(mode="json") if hasattr(row, "model_dump") else dict(row)
        change = ChangeEvent(table=table, event=event, new=new)

        with self._lock:
            targets = [s for s in self._subscriptions if s.matches(change)]

        for subscription in targets:
            subscription.deliver(change)

        return change


_change_feed: Optional[ChangeFeed] = None


def get_change_feed() -> ChangeFeed:
    global _change_feed
    if _change_feed is None:
        _change_feed = ChangeFeed()
    return _change_feed
