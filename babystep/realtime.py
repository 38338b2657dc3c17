"""In-process fan-out of "table changed for baby" notifications.

Subscribers re-fetch and recompute on every event; there is no diffing.
"""
from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

ANY_TABLE = "*"
STREAM_KEEPALIVE_SECONDS = 15.0

Subscriber = Callable[["ChangeEvent"], Union[None, Awaitable[None]]]


@dataclass
class ChangeEvent:
    table: str
    baby_id: str
    event_type: str = "UPDATE"
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_webhook(cls, payload: Dict[str, Any]) -> Optional["ChangeEvent"]:
        """Build an event from a database webhook body, or ``None`` if it names no baby."""
        table = payload.get("table")
        record = payload.get("record") or payload.get("old_record") or {}
        baby_id = record.get("baby_id") if isinstance(record, dict) else None
        if not table or not baby_id:
            return None
        return cls(table=table, baby_id=str(baby_id), event_type=payload.get("type") or "UPDATE")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table,
            "baby_id": self.baby_id,
            "event_type": self.event_type,
            "received_at": self.received_at.isoformat(),
        }


class ChangeBus:
    def __init__(self) -> None:
        self._subscribers: Dict[Tuple[str, str], List[Subscriber]] = defaultdict(list)

    def subscribe(self, table: str, baby_id: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback``; the returned function unsubscribes it."""
        key = (table, baby_id)
        self._subscribers[key].append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(key, None)

        return unsubscribe

    def subscriber_count(self, table: str, baby_id: str) -> int:
        return len(self._subscribers.get((table, baby_id), []))

    async def publish(self, event: ChangeEvent) -> int:
        callbacks = list(self._subscribers.get((event.table, event.baby_id), []))
        callbacks += self._subscribers.get((ANY_TABLE, event.baby_id), [])
        for callback in callbacks:
            result = callback(event)
            if inspect.isawaitable(result):
                await result
        logger.debug(
            "change published",
            extra={"table": event.table, "baby_id": event.baby_id, "subscribers": len(callbacks)},
        )
        return len(callbacks)


change_bus = ChangeBus()


async def change_stream(
    bus: ChangeBus,
    baby_id: str,
    *,
    keepalive: float = STREAM_KEEPALIVE_SECONDS,
) -> AsyncIterator[str]:
    """Server-sent event frames for every change to ``baby_id``.

    The subscription lives exactly as long as the generator; closing it (the
    client disconnecting) unsubscribes.
    """
    queue: "asyncio.Queue[ChangeEvent]" = asyncio.Queue()
    unsubscribe = bus.subscribe(ANY_TABLE, baby_id, queue.put_nowait)
    logger.info("change stream opened", extra={"baby_id": baby_id})
    try:
        yield "event: connected\ndata: {}\n\n"
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield f"event: change\ndata: {json.dumps(event.to_dict())}\n\n"
    finally:
        unsubscribe()
        logger.info("change stream closed", extra={"baby_id": baby_id})
