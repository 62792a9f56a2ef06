"""
Change feeds: where row-level change notifications come from.

Two implementations share one interface:
- SupabaseChangeFeed subscribes to Supabase Realtime postgres_changes channels.
- ChangeBroker is an in-process fan-out that the services publish into after
  each successful store mutation (realtime_backend=local, and the test suite).

Filters use the Realtime syntax: ``column=eq.value`` or ``column=in.(a,b,c)``.
"""

import logging
import threading
import uuid
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import BaseModel, Field

from cotask.config import settings

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
ALL_EVENTS = "*"


class ChangeEvent(BaseModel):
    table: str
    event_type: str
    new: Dict[str, Any] = Field(default_factory=dict)
    old: Dict[str, Any] = Field(default_factory=dict)

    @property
    def record(self) -> Dict[str, Any]:
        """Row the event is about: the new image, or the old one for deletes."""
        if self.event_type == DELETE:
            return self.old
        return self.new or self.old

    @property
    def row_id(self) -> Optional[str]:
        return self.new.get("id") or self.old.get("id")

    @classmethod
    def from_realtime_payload(cls, payload: Dict[str, Any]) -> "ChangeEvent":
        data = payload.get("data", payload)
        event_type = (data.get("type") or data.get("eventType") or "").upper()
        return cls(
            table=data.get("table", ""),
            event_type=event_type,
            new=data.get("record") or data.get("new") or {},
            old=data.get("old_record") or data.get("old") or {},
        )


class RowFilter:
    def __init__(self, column: str, op: str, values: Tuple[str, ...]):
        self.column = column
        self.op = op
        self.values = values

    @classmethod
    def parse(cls, expression: Optional[str]) -> Optional["RowFilter"]:
        if not expression:
            return None
        column, sep, rest = expression.partition("=")
        op, dot, raw = rest.partition(".")
        if not sep or not dot or op not in ("eq", "in"):
            raise ValueError(f"Unsupported realtime filter: {expression}")
        if op == "in":
            values = tuple(v.strip() for v in raw.strip("()").split(",") if v.strip())
        else:
            values = (raw,)
        return cls(column, op, values)

    @classmethod
    def eq(cls, column: str, value: str) -> str:
        return f"{column}=eq.{value}"

    @classmethod
    def in_(cls, column: str, values) -> str:
        return f"{column}=in.({','.join(str(v) for v in values)})"

    def matches(self, row: Dict[str, Any]) -> bool:
        if self.column not in row:
            return False
        return str(row[self.column]) in self.values

    def __str__(self) -> str:
        if self.op == "in":
            return f"{self.column}=in.({','.join(self.values)})"
        return f"{self.column}=eq.{self.values[0]}"


ChangeCallback = Callable[[ChangeEvent], None]


class SubscriptionHandle:
    def __init__(self, table: str, filter: Optional[str], callback: ChangeCallback, events: str = ALL_EVENTS):
        self.id = uuid.uuid4().hex
        self.table = table
        self.filter = filter
        self.row_filter = RowFilter.parse(filter)
        self.callback = callback
        self.events = events
        self.channel: Any = None
        self.closed = False

    def wants(self, event: ChangeEvent) -> bool:
        if self.closed or event.table != self.table:
            return False
        if self.events != ALL_EVENTS and event.event_type != self.events:
            return False
        if self.row_filter is None:
            return True
        return self.row_filter.matches(event.record)

    def __repr__(self) -> str:
        return f"<SubscriptionHandle {self.table} {self.filter or '*'} {self.events}>"


class ChangeFeed:
    async def open_subscription(
        self,
        table: str,
        filter: Optional[str],
        callback: ChangeCallback,
        events: str = ALL_EVENTS,
    ) -> SubscriptionHandle:
        raise NotImplementedError

    async def close(self, handle: SubscriptionHandle) -> None:
        raise NotImplementedError


class ChangeBroker(ChangeFeed):
    """Thread-safe in-process change fan-out."""

    def __init__(self):
        self._lock = threading.Lock()
        self._handles: Dict[str, SubscriptionHandle] = {}

    async def open_subscription(self, table, filter, callback, events=ALL_EVENTS) -> SubscriptionHandle:
        return self.subscribe(table, filter, callback, events)

    async def close(self, handle: SubscriptionHandle) -> None:
        self.unsubscribe(handle)

    def subscribe(self, table: str, filter: Optional[str], callback: ChangeCallback, events: str = ALL_EVENTS) -> SubscriptionHandle:
        handle = SubscriptionHandle(table, filter, callback, events)
        with self._lock:
            self._handles[handle.id] = handle
        logger.debug(f"Opened local subscription {handle}")
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        handle.closed = True
        with self._lock:
            self._handles.pop(handle.id, None)
        logger.debug(f"Closed local subscription {handle}")

    @property
    def subscription_count(self) -> int:
        with self._lock:
            return len(self._handles)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver to every matching subscription. Returns the number of deliveries."""
        with self._lock:
            targets = [h for h in self._handles.values() if h.wants(event)]
        for handle in targets:
            try:
                handle.callback(event)
            except Exception as e:
                logger.error(f"Change callback failed for {handle}: {e}")
        return len(targets)


class SupabaseChangeFeed(ChangeFeed):
    """Supabase Realtime postgres_changes, one channel per subscription."""

    def __init__(self, client=None, schema: str = "public"):
        self._client = client
        self.schema = schema

    async def _get_client(self):
        if self._client is None:
            from cotask.database.supabase_client import SupabaseClient
            self._client = await SupabaseClient.get_async_client()
        return self._client

    async def open_subscription(self, table, filter, callback, events=ALL_EVENTS) -> SubscriptionHandle:
        client = await self._get_client()
        handle = SubscriptionHandle(table, filter, callback, events)

        def on_change(payload: Dict[str, Any]) -> None:
            event = ChangeEvent.from_realtime_payload(payload)
            if not event.table:
                event.table = table
            if handle.closed:
                return
            callback(event)

        channel = client.channel(f"{table}-{handle.id}")
        kwargs = {"table": table, "schema": self.schema}
        if filter:
            kwargs["filter"] = filter
        channel.on_postgres_changes(events, on_change, **kwargs)
        await channel.subscribe()
        handle.channel = channel
        logger.info(f"Subscribed to realtime changes on {table} ({filter or 'all rows'})")
        return handle

    async def close(self, handle: SubscriptionHandle) -> None:
        handle.closed = True
        if handle.channel is None:
            return
        client = await self._get_client()
        try:
            await client.remove_channel(handle.channel)
        except Exception as e:
            logger.warning(f"Failed to remove realtime channel for {handle}: {e}")
        handle.channel = None


_broker = ChangeBroker()


def get_publisher() -> Optional[ChangeBroker]:
    """Broker the services publish into; None when Supabase Realtime is the source."""
    return _broker if settings.uses_local_realtime else None


def build_change_feed() -> ChangeFeed:
    if settings.uses_local_realtime:
        return _broker
    return SupabaseChangeFeed()
